from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from roaster.core.telemetry import ProviderCallTelemetry, TelemetryWriter
from roaster.db.models import Account, ProviderCallRecord


def test_flush_writes_calls_and_charges(services, account_factory) -> None:
    account_id = account_factory()
    writer = TelemetryWriter(services.database)
    writer.record_call(
        ProviderCallTelemetry(
            owner_id=account_id,
            provider="openai",
            model="nano",
            operation="roast_generation",
            status="completed",
            input_tokens=100,
            output_tokens=50,
            cost_usd=Decimal("0.000030"),
            messages=[{"role": "user", "content": "hi", "input_tokens": 100, "total_tokens": 100}],
        )
    )
    writer.charge(account_id, "roast_generation")

    assert writer.pending == 2
    assert writer.flush() == 2
    assert writer.pending == 0

    with services.database.session() as session:
        call = session.scalars(select(ProviderCallRecord)).one()
        assert call.total_tokens == 150
        assert call.messages[0].content == "hi"
        assert session.get(Account, account_id).monthly_usage == 1


def test_failed_writes_are_logged_and_dropped(services, caplog) -> None:
    writer = TelemetryWriter(services.database)
    writer.charge(12345, "roast_generation")
    writer.record_call(
        ProviderCallTelemetry(owner_id=None, provider="openai", model="mini", operation="job_extraction", status="completed")
    )

    with caplog.at_level("ERROR", logger="roaster.telemetry"):
        assert writer.flush() == 1

    assert writer.pending == 0
    assert "Telemetry write failed" in caplog.text
