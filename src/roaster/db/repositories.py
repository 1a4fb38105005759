from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from roaster.db.base import Base
from roaster.db.models import (
    GENERATED_MODELS,
    Account,
    ExtractedDocument,
    ExtractedJobPosting,
    MessageRecord,
    ProviderCallRecord,
    RawDocument,
    SummarizedDocument,
    SummarizedJobPosting,
)
from roaster.errors import NotFoundError, PersistenceConflict, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


class ContentStore(Generic[ModelT]):
    """Single-row access to one content-addressed table."""

    hash_column = "content_hash"

    def __init__(self, session: Session, model: type[ModelT]):
        self.session = session
        self.model = model

    @property
    def _hash_attr(self) -> Any:
        return getattr(self.model, self.hash_column)

    def get(self, row_id: int) -> ModelT | None:
        return self.session.get(self.model, row_id)

    def find_by_hash(self, content_hash: str) -> ModelT | None:
        return self.session.scalar(select(self.model).where(self._hash_attr == content_hash))

    def create(self, **attributes: Any) -> ModelT:
        row = self.model(**attributes)
        self.session.add(row)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            content_hash = str(attributes.get(self.hash_column, ""))
            logger.info("Unique hash conflict table=%s hash=%s", self.model.__tablename__, content_hash[:12])
            raise PersistenceConflict(str(exc.orig), content_hash=content_hash) from exc
        self.session.refresh(row)
        return row

    def delete_by_id(self, row_id: int) -> bool:
        row = self.session.get(self.model, row_id)
        if row is None:
            return False
        self.session.delete(row)
        self.session.commit()
        return True

    def delete_by_hash(self, content_hash: str) -> int:
        result = self.session.execute(delete(self.model).where(self._hash_attr == content_hash))
        self.session.commit()
        return result.rowcount or 0

    def list_recent(self, owner_id: int, limit: int = 10) -> list[ModelT]:
        statement = (
            select(self.model)
            .where(self.model.owner_id == owner_id)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(statement).all())


class RawDocumentStore(ContentStore[RawDocument]):
    hash_column = "file_hash"

    def __init__(self, session: Session):
        super().__init__(session, RawDocument)

    def attach_images(self, document: RawDocument, images: list[str]) -> RawDocument:
        document.images = list(images)
        metadata = dict(document.metadata_json or {})
        metadata["image_count"] = len(images)
        document.metadata_json = metadata
        self.session.commit()
        self.session.refresh(document)
        return document

    def purge_anonymous(self, older_than_days: int, *, now: datetime | None = None) -> int:
        """Deletes stale anonymous uploads together with their anonymous extractions.

        A document stays while any account still depends on it: an owned
        extraction, an owned summary of one of its extractions, or an owned
        generated artifact built from it.
        """
        cutoff = (now or datetime.now(UTC)) - timedelta(days=older_than_days)
        owned_summary = exists().where(
            SummarizedDocument.extracted_document_id == ExtractedDocument.id,
            SummarizedDocument.owner_id.is_not(None),
        )
        claimed = [
            exists().where(
                ExtractedDocument.raw_document_id == RawDocument.id,
                or_(ExtractedDocument.owner_id.is_not(None), owned_summary),
            )
        ]
        claimed += [
            exists().where(model.raw_document_id == RawDocument.id, model.owner_id.is_not(None))
            for model in GENERATED_MODELS.values()
        ]
        doomed = list(
            self.session.scalars(
                select(RawDocument.id).where(
                    RawDocument.created_at < cutoff,
                    RawDocument.owner_id.is_(None),
                    ~or_(*claimed),
                )
            ).all()
        )
        if not doomed:
            return 0

        # Dependents go first; SQLite only applies ON DELETE with foreign_keys on.
        extractions = select(ExtractedDocument.id).where(ExtractedDocument.raw_document_id.in_(doomed))
        self.session.execute(
            delete(SummarizedDocument).where(SummarizedDocument.extracted_document_id.in_(extractions))
        )
        self.session.execute(delete(ExtractedDocument).where(ExtractedDocument.raw_document_id.in_(doomed)))
        for model in GENERATED_MODELS.values():
            self.session.execute(
                update(model).where(model.raw_document_id.in_(doomed)).values(raw_document_id=None)
            )
        result = self.session.execute(delete(RawDocument).where(RawDocument.id.in_(doomed)))
        self.session.commit()
        logger.info("Purged anonymous raw documents count=%s cutoff=%s", result.rowcount, cutoff.isoformat())
        return result.rowcount or 0


class GeneratedArtifactStore(ContentStore[Any]):
    """Generated artifacts belong to one account and keep every regeneration as a new revision."""

    def __init__(self, session: Session, kind: str):
        model = GENERATED_MODELS.get(kind)
        if model is None:
            raise ValidationError(f"unknown artifact kind '{kind}'")
        super().__init__(session, model)
        self.kind = kind

    def find_by_hash(self, content_hash: str, owner_id: int | None = None) -> Any:
        statement = (
            select(self.model)
            .where(self.model.content_hash == content_hash, self.model.owner_id == owner_id)
            .order_by(self.model.revision.desc())
            .limit(1)
        )
        return self.session.scalar(statement)

    def next_revision(self, content_hash: str, owner_id: int | None = None) -> int:
        current = self.session.scalar(
            select(func.max(self.model.revision)).where(
                self.model.content_hash == content_hash,
                self.model.owner_id == owner_id,
            )
        )
        return 0 if current is None else current + 1


class Stores:
    def __init__(self, session: Session):
        self.session = session
        self.raw_documents = RawDocumentStore(session)
        self.extracted_documents = ContentStore(session, ExtractedDocument)
        self.job_postings = ContentStore(session, ExtractedJobPosting)
        self.summarized_documents = ContentStore(session, SummarizedDocument)
        self.summarized_job_postings = ContentStore(session, SummarizedJobPosting)

    def generated(self, kind: str) -> GeneratedArtifactStore:
        return GeneratedArtifactStore(self.session, kind)

    def by_kind(self, kind: str) -> ContentStore[Any]:
        stores: dict[str, ContentStore[Any]] = {
            "resume": self.extracted_documents,
            "job_posting": self.job_postings,
            "resume_summary": self.summarized_documents,
            "job_posting_summary": self.summarized_job_postings,
        }
        store = stores.get(kind)
        return store if store is not None else self.generated(kind)


class AccountRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, *, email: str, name: str = "", tier: str = "free", bonus_credits: int = 0) -> Account:
        if tier not in {"free", "plus", "premium"}:
            raise ValidationError(f"unsupported tier '{tier}'")
        account = Account(email=email, name=name, tier=tier, bonus_credits=bonus_credits)
        self.session.add(account)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationError(f"account with email {email} already exists") from exc
        self.session.refresh(account)
        return account

    def get(self, account_id: int) -> Account | None:
        return self.session.get(Account, account_id)

    def require(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if account is None:
            raise NotFoundError(f"account {account_id} not found")
        return account

    def reset_monthly(self, account_id: int, now: datetime) -> None:
        self.session.execute(
            update(Account)
            .where(Account.id == account_id, Account.last_reset < now)
            .values(monthly_usage=0, last_reset=now)
        )
        self.session.commit()

    def increment_usage(self, account_id: int, *, monthly: bool, consume_bonus: bool) -> None:
        values: dict[str, Any] = {"lifetime_usage": Account.lifetime_usage + 1}
        if monthly:
            values["monthly_usage"] = Account.monthly_usage + 1
        statement = update(Account).where(Account.id == account_id)
        if consume_bonus:
            values["bonus_credits"] = Account.bonus_credits - 1
            statement = statement.where(Account.bonus_credits > 0)
        result = self.session.execute(statement.values(**values))
        if consume_bonus and not result.rowcount:
            # Bonus balance ran out between check and debit; count against the month instead.
            self.session.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(lifetime_usage=Account.lifetime_usage + 1, monthly_usage=Account.monthly_usage + 1)
            )
        self.session.commit()


class ProviderCallRepository:
    def __init__(self, session: Session):
        self.session = session

    def record_call(
        self,
        *,
        owner_id: int | None,
        provider: str,
        model: str,
        operation: str,
        status: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost_usd: Decimal = Decimal("0"),
        processing_time_ms: int = 0,
        error_message: str = "",
        artifact_kind: str = "",
        artifact_id: int | None = None,
        messages: list[dict[str, Any]] | None = None,
    ) -> ProviderCallRecord:
        call = ProviderCallRecord(
            owner_id=owner_id,
            provider=provider,
            model=model,
            operation=operation,
            status=status,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            total_cost_usd=cost_usd,
            processing_time_ms=processing_time_ms,
            error_message=error_message,
            artifact_kind=artifact_kind,
            artifact_id=artifact_id,
            completed_at=datetime.now(UTC),
        )
        for index, message in enumerate(messages or []):
            call.messages.append(MessageRecord(message_index=index, **message))
        self.session.add(call)
        self.session.commit()
        self.session.refresh(call)
        return call

    def usage_stats(
        self,
        owner_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        statement = select(ProviderCallRecord).where(ProviderCallRecord.owner_id == owner_id)
        if start is not None:
            statement = statement.where(ProviderCallRecord.created_at >= start)
        if end is not None:
            statement = statement.where(ProviderCallRecord.created_at <= end)
        calls = list(self.session.scalars(statement.order_by(ProviderCallRecord.id.asc())).all())

        total_cost = sum((Decimal(call.total_cost_usd) for call in calls), Decimal("0"))
        return {
            "calls": [
                {
                    "provider": call.provider,
                    "model": call.model,
                    "operation": call.operation,
                    "status": call.status,
                    "total_tokens": call.total_tokens,
                    "total_cost_usd": str(call.total_cost_usd),
                    "created_at": call.created_at.isoformat() if call.created_at else None,
                }
                for call in calls
            ],
            "total_cost_usd": str(total_cost.quantize(Decimal("0.000001"))),
            "total_tokens": sum(call.total_tokens for call in calls),
            "call_count": len(calls),
        }
