from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from roaster.core.ledger import BonusCreditPolicy, UsageLedger
from roaster.db.repositories import ProviderCallRepository
from roaster.db.session import Database

logger = logging.getLogger("roaster.telemetry")


@dataclass(slots=True)
class ProviderCallTelemetry:
    owner_id: int | None
    provider: str
    model: str
    operation: str
    status: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: Decimal = Decimal("0")
    processing_time_ms: int = 0
    error_message: str = ""
    artifact_kind: str = ""
    artifact_id: int | None = None
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class UsageCharge:
    account_id: int
    operation: str


class TelemetryWriter:
    """Best-effort side-channel for provider-call records and usage charges.

    Entries are queued on the request path and written by ``flush`` with a
    session of their own, after the response has been produced. A failed
    write is logged here and never reaches the caller.
    """

    def __init__(self, database: Database, *, policy: BonusCreditPolicy = "after_quota"):
        self.database = database
        self.policy = policy
        self._pending: deque[ProviderCallTelemetry | UsageCharge] = deque()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def record_call(self, entry: ProviderCallTelemetry) -> None:
        self._pending.append(entry)

    def charge(self, account_id: int, operation: str) -> None:
        self._pending.append(UsageCharge(account_id=account_id, operation=operation))

    def flush(self) -> int:
        written = 0
        while True:
            try:
                entry = self._pending.popleft()
            except IndexError:
                return written
            try:
                self._write(entry)
                written += 1
            except Exception:
                logger.exception("Telemetry write failed entry=%s", type(entry).__name__)

    def _write(self, entry: ProviderCallTelemetry | UsageCharge) -> None:
        with self.database.session() as session:
            if isinstance(entry, UsageCharge):
                UsageLedger(session, policy=self.policy).record_usage(entry.account_id)
                return
            ProviderCallRepository(session).record_call(
                owner_id=entry.owner_id,
                provider=entry.provider,
                model=entry.model,
                operation=entry.operation,
                status=entry.status,
                input_tokens=entry.input_tokens,
                output_tokens=entry.output_tokens,
                cost_usd=entry.cost_usd,
                processing_time_ms=entry.processing_time_ms,
                error_message=entry.error_message,
                artifact_kind=entry.artifact_kind,
                artifact_id=entry.artifact_id,
                messages=entry.messages,
            )
