"""Initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

GENERATED_TABLES = (
    "generated_roasts",
    "generated_cover_letters",
    "generated_resumes",
    "generated_interview_preps",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _owner() -> sa.Column:
    return sa.Column("owner_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)


def _result_columns() -> list[sa.Column]:
    return [
        sa.Column("provider", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("model", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("data", sa.JSON(), nullable=False),
    ]


def _generated_table(name: str, *extra: sa.Column) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
        _owner(),
        sa.Column(
            "raw_document_id",
            sa.Integer(),
            sa.ForeignKey("raw_documents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_result_columns(),
        *extra,
        *_timestamps(),
        sa.UniqueConstraint("owner_id", "content_hash", "revision", name=f"uq_{name}_owner_hash_rev"),
    )
    op.create_index(f"ix_{name}_content_hash", name, ["content_hash"])
    op.create_index(f"ix_{name}_owner_id", name, ["owner_id"])


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("tier", sa.String(length=20), nullable=False, server_default="free"),
        sa.Column("monthly_usage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_usage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bonus_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reset", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "raw_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("file_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column("filename", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("mime_type", sa.String(length=120), nullable=False, server_default=""),
        _owner(),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        sa.Column("extracted_text", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
    )
    op.create_index("ix_raw_documents_owner_id", "raw_documents", ["owner_id"])

    op.create_table(
        "extracted_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "raw_document_id",
            sa.Integer(),
            sa.ForeignKey("raw_documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _owner(),
        sa.Column("extraction_method", sa.String(length=20), nullable=False),
        *_result_columns(),
        *_timestamps(),
    )
    op.create_index("ix_extracted_documents_raw_document_id", "extracted_documents", ["raw_document_id"])
    op.create_index("ix_extracted_documents_owner_id", "extracted_documents", ["owner_id"])

    op.create_table(
        "extracted_job_postings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_hash", sa.String(length=64), nullable=False, unique=True),
        _owner(),
        sa.Column("original_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("extraction_method", sa.String(length=20), nullable=False),
        *_result_columns(),
        *_timestamps(),
    )
    op.create_index("ix_extracted_job_postings_owner_id", "extracted_job_postings", ["owner_id"])

    op.create_table(
        "summarized_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "extracted_document_id",
            sa.Integer(),
            sa.ForeignKey("extracted_documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _owner(),
        *_result_columns(),
        *_timestamps(),
    )
    op.create_index(
        "ix_summarized_documents_extracted_document_id", "summarized_documents", ["extracted_document_id"]
    )
    op.create_index("ix_summarized_documents_owner_id", "summarized_documents", ["owner_id"])

    op.create_table(
        "summarized_job_postings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "extracted_job_posting_id",
            sa.Integer(),
            sa.ForeignKey("extracted_job_postings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _owner(),
        *_result_columns(),
        *_timestamps(),
    )
    op.create_index(
        "ix_summarized_job_postings_extracted_job_posting_id",
        "summarized_job_postings",
        ["extracted_job_posting_id"],
    )
    op.create_index("ix_summarized_job_postings_owner_id", "summarized_job_postings", ["owner_id"])

    _generated_table("generated_roasts", sa.Column("overall_score", sa.Integer(), nullable=True))
    _generated_table(
        "generated_cover_letters",
        sa.Column("tone", sa.String(length=40), nullable=False, server_default="professional"),
    )
    _generated_table(
        "generated_resumes",
        sa.Column("template_id", sa.String(length=80), nullable=False, server_default=""),
        sa.Column("analysis_id", sa.String(length=80), nullable=False, server_default=""),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("ats_score", sa.Integer(), nullable=True),
        sa.Column("keywords_matched", sa.JSON(), nullable=False),
    )
    _generated_table(
        "generated_interview_preps",
        sa.Column("difficulty", sa.String(length=20), nullable=False, server_default="medium"),
        sa.Column("question_count", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "provider_calls",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("provider", sa.String(length=40), nullable=False),
        sa.Column("model", sa.String(length=40), nullable=False),
        sa.Column("operation", sa.String(length=60), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="completed"),
        sa.Column("input_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("output_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cost_usd", sa.Numeric(12, 6), nullable=False, server_default="0"),
        sa.Column("processing_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=False, server_default=""),
        sa.Column("artifact_kind", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("artifact_id", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_provider_calls_owner_id", "provider_calls", ["owner_id"])

    op.create_table(
        "provider_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "call_id",
            sa.Integer(),
            sa.ForeignKey("provider_calls.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("message_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("input_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("output_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_usd", sa.Numeric(12, 6), nullable=False, server_default="0"),
        sa.Column("processing_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("finish_reason", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("max_tokens", sa.Integer(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_provider_messages_call_id", "provider_messages", ["call_id"])


def downgrade() -> None:
    op.drop_table("provider_messages")
    op.drop_table("provider_calls")
    for name in reversed(GENERATED_TABLES):
        op.drop_table(name)
    op.drop_table("summarized_job_postings")
    op.drop_table("summarized_documents")
    op.drop_table("extracted_job_postings")
    op.drop_table("extracted_documents")
    op.drop_table("raw_documents")
    op.drop_table("accounts")
