from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path

import typer
import uvicorn

from roaster.api.app import create_app
from roaster.config import get_settings
from roaster.core.hasher import file_fingerprint
from roaster.core.ledger import UsageLedger
from roaster.core.orchestrator import CacheOrchestrator
from roaster.core.runtime import RoasterServices, build_services
from roaster.db.init import init_database
from roaster.db.repositories import AccountRepository, ProviderCallRepository, RawDocumentStore
from roaster.errors import RoasterError
from roaster.logging_config import configure_logging
from roaster.types import ResumeExtractionCommand

app = typer.Typer(help="Resume Roaster CLI")
account_app = typer.Typer(help="Manage accounts and quotas")

app.add_typer(account_app, name="account")


def _services() -> RoasterServices:
    configure_logging()
    settings = get_settings()
    services = build_services(settings)
    init_database(settings, services.database)
    return services


def _fail(exc: RoasterError) -> None:
    typer.echo(json.dumps(exc.to_payload(), indent=2), err=True)
    raise typer.Exit(code=1)


@app.command("init")
def init_cmd() -> None:
    """Initialize data directories and database tables."""
    configure_logging()
    settings = get_settings()
    services = build_services(settings)
    result = init_database(settings, services.database)
    services.database.dispose()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@account_app.command("create")
def account_create(
    email: str = typer.Option(..., "--email"),
    name: str = typer.Option("", "--name"),
    tier: str = typer.Option("free", "--tier"),
    bonus_credits: int = typer.Option(0, "--bonus-credits"),
) -> None:
    services = _services()
    try:
        with services.database.session() as db:
            account = AccountRepository(db).create(email=email, name=name, tier=tier, bonus_credits=bonus_credits)
            typer.echo(json.dumps({"id": account.id, "email": account.email, "tier": account.tier}, indent=2))
    except RoasterError as exc:
        _fail(exc)
    finally:
        services.database.dispose()


@account_app.command("quota")
def account_quota(account_id: int = typer.Option(..., "--account-id")) -> None:
    services = _services()
    try:
        with services.database.session() as db:
            status = UsageLedger(db, policy=services.settings.bonus_credit_policy).check_quota(account_id)  # type: ignore[arg-type]
            typer.echo(json.dumps(status.model_dump(), indent=2))
    except RoasterError as exc:
        _fail(exc)
    finally:
        services.database.dispose()


@account_app.command("usage")
def account_usage(
    account_id: int = typer.Option(..., "--account-id"),
    start: datetime | None = typer.Option(None, "--start"),
    end: datetime | None = typer.Option(None, "--end"),
) -> None:
    services = _services()
    try:
        with services.database.session() as db:
            AccountRepository(db).require(account_id)
            stats = ProviderCallRepository(db).usage_stats(account_id, start=start, end=end)
            typer.echo(json.dumps(stats, indent=2))
    except RoasterError as exc:
        _fail(exc)
    finally:
        services.database.dispose()


@app.command("extract")
def extract_cmd(
    file: Path = typer.Option(..., "--file", exists=True, readable=True),
    account_id: int | None = typer.Option(None, "--account-id"),
    method: str = typer.Option("auto", "--method"),
    provider: str | None = typer.Option(None, "--provider"),
    model: str | None = typer.Option(None, "--model"),
    bypass_cache: bool = typer.Option(False, "--bypass-cache"),
) -> None:
    """Extract a résumé PDF or text file through the cache."""
    services = _services()
    data = file.read_bytes()
    is_pdf = file.suffix.lower() == ".pdf"
    command = ResumeExtractionCommand(
        file_bytes=data if is_pdf else None,
        text=None if is_pdf else data.decode("utf-8", errors="replace"),
        filename=file.name,
        mime_type="application/pdf" if is_pdf else "text/plain",
        account_id=account_id,
        method=method,  # type: ignore[arg-type]
        provider=provider,
        model=model,
        bypass_cache=bypass_cache,
    )

    async def _run() -> dict:
        try:
            with services.database.session() as db:
                result = await CacheOrchestrator(db, services).extract_resume(command)
                return result.model_dump(exclude={"states"})
        finally:
            await services.aclose()

    try:
        payload = asyncio.run(_run())
    except RoasterError as exc:
        _fail(exc)
        return
    typer.echo(json.dumps(payload, indent=2, default=str))


@app.command("sweep")
def sweep_cmd(days: int | None = typer.Option(None, "--days")) -> None:
    """Delete anonymous raw documents older than the retention window."""
    services = _services()
    retention = days if days is not None else services.settings.anonymous_retention_days
    with services.database.session() as db:
        deleted = RawDocumentStore(db).purge_anonymous(retention)
    services.database.dispose()
    typer.echo(json.dumps({"deleted": deleted, "retention_days": retention}, indent=2))


@app.command("fingerprint")
def fingerprint_cmd(file: Path = typer.Argument(..., exists=True, readable=True)) -> None:
    """Print the SHA-256 file hash used to deduplicate uploads."""
    typer.echo(file_fingerprint(file.read_bytes()))


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    settings = get_settings()
    app_instance = create_app(settings)
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)
