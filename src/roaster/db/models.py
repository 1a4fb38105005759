from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roaster.db.base import Base, TimestampMixin, utcnow


class Account(TimestampMixin, Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    tier: Mapped[str] = mapped_column(String(20), default="free", nullable=False)
    monthly_usage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_usage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bonus_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reset: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class RawDocument(TimestampMixin, Base):
    __tablename__ = "raw_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    file_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    filename: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    mime_type: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    images: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    extracted_text: Mapped[str] = mapped_column(Text, default="", nullable=False)


class ExtractedDocument(TimestampMixin, Base):
    __tablename__ = "extracted_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    raw_document_id: Mapped[int] = mapped_column(
        ForeignKey("raw_documents.id", ondelete="CASCADE"), index=True
    )
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    extraction_method: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    model: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class ExtractedJobPosting(TimestampMixin, Base):
    __tablename__ = "extracted_job_postings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    original_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    extraction_method: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    model: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class SummarizedDocument(TimestampMixin, Base):
    __tablename__ = "summarized_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    extracted_document_id: Mapped[int] = mapped_column(
        ForeignKey("extracted_documents.id", ondelete="CASCADE"), index=True
    )
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    provider: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    model: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class SummarizedJobPosting(TimestampMixin, Base):
    __tablename__ = "summarized_job_postings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    extracted_job_posting_id: Mapped[int] = mapped_column(
        ForeignKey("extracted_job_postings.id", ondelete="CASCADE"), index=True
    )
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    provider: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    model: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class GeneratedArtifactMixin(TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    revision: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    raw_document_id: Mapped[int | None] = mapped_column(
        ForeignKey("raw_documents.id", ondelete="SET NULL"), nullable=True
    )
    provider: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    model: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class GeneratedRoast(GeneratedArtifactMixin, Base):
    __tablename__ = "generated_roasts"
    __table_args__ = (
        UniqueConstraint("owner_id", "content_hash", "revision", name="uq_generated_roasts_owner_hash_rev"),
    )

    overall_score: Mapped[int | None] = mapped_column(Integer, nullable=True)


class GeneratedCoverLetter(GeneratedArtifactMixin, Base):
    __tablename__ = "generated_cover_letters"
    __table_args__ = (
        UniqueConstraint("owner_id", "content_hash", "revision", name="uq_generated_cover_letters_owner_hash_rev"),
    )

    tone: Mapped[str] = mapped_column(String(40), default="professional", nullable=False)


class GeneratedResume(GeneratedArtifactMixin, Base):
    __tablename__ = "generated_resumes"
    __table_args__ = (
        UniqueConstraint("owner_id", "content_hash", "revision", name="uq_generated_resumes_owner_hash_rev"),
    )

    template_id: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    analysis_id: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    ats_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    keywords_matched: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)


class GeneratedInterviewPrep(GeneratedArtifactMixin, Base):
    __tablename__ = "generated_interview_preps"
    __table_args__ = (
        UniqueConstraint("owner_id", "content_hash", "revision", name="uq_generated_interview_preps_owner_hash_rev"),
    )

    difficulty: Mapped[str] = mapped_column(String(20), default="medium", nullable=False)
    question_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class ProviderCallRecord(TimestampMixin, Base):
    __tablename__ = "provider_calls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    provider: Mapped[str] = mapped_column(String(40), nullable=False)
    model: Mapped[str] = mapped_column(String(40), nullable=False)
    operation: Mapped[str] = mapped_column(String(60), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="completed", nullable=False)
    input_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), default=Decimal("0"), nullable=False)
    processing_time_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    artifact_kind: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    artifact_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    messages: Mapped[list[MessageRecord]] = relationship(
        back_populates="call",
        cascade="all, delete-orphan",
        order_by="MessageRecord.message_index",
    )


class MessageRecord(TimestampMixin, Base):
    __tablename__ = "provider_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    call_id: Mapped[int] = mapped_column(ForeignKey("provider_calls.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    message_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    input_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), default=Decimal("0"), nullable=False)
    processing_time_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    finish_reason: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    call: Mapped[ProviderCallRecord] = relationship(back_populates="messages")


GENERATED_MODELS: dict[str, type[GeneratedArtifactMixin]] = {
    "roast": GeneratedRoast,
    "cover_letter": GeneratedCoverLetter,
    "optimized_resume": GeneratedResume,
    "interview_prep": GeneratedInterviewPrep,
}
