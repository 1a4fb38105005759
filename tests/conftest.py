from __future__ import annotations

from pathlib import Path

import pytest

from roaster.config import Settings
from roaster.core.runtime import RoasterServices, build_services
from roaster.core.vision import VisionPreprocessor
from roaster.db.init import init_database
from roaster.db.repositories import AccountRepository
from support import ROAST_PAYLOAD, ScriptedAdapter


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        app_env="test",
        database_url=f"sqlite:///{tmp_path / 'roaster.db'}",
        data_dir=tmp_path / "data",
        openai_api_key="test-openai",
        anthropic_api_key="test-anthropic",
        pdf_converter_service_url="",
        bonus_credit_policy="after_quota",
        cors_origins="*",
    )


@pytest.fixture()
def adapters() -> dict[str, ScriptedAdapter]:
    return {
        "openai": ScriptedAdapter("openai", payload=dict(ROAST_PAYLOAD)),
        "anthropic": ScriptedAdapter("anthropic", payload=dict(ROAST_PAYLOAD)),
    }


@pytest.fixture()
def services(settings: Settings, adapters: dict[str, ScriptedAdapter]) -> RoasterServices:
    built = build_services(
        settings,
        adapters=dict(adapters),
        vision=VisionPreprocessor("", max_pages=3),
    )
    init_database(settings, built.database)
    yield built
    built.database.dispose()


@pytest.fixture()
def db(services: RoasterServices):
    with services.database.session() as session:
        yield session


@pytest.fixture()
def account_factory(services: RoasterServices):
    counter = {"value": 0}

    def create(tier: str = "free", bonus_credits: int = 0) -> int:
        counter["value"] += 1
        with services.database.session() as session:
            account = AccountRepository(session).create(
                email=f"user{counter['value']}@example.com",
                name=f"User {counter['value']}",
                tier=tier,
                bonus_credits=bonus_credits,
            )
            return account.id

    return create
