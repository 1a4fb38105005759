from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url

from roaster.config import Settings
from roaster.db import models  # noqa: F401
from roaster.db.base import Base
from roaster.db.session import Database


def ensure_data_directories(settings: Settings) -> None:
    paths: list[Path] = [settings.data_dir]
    url = make_url(settings.database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        paths.append(Path(url.database).parent)
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)


def init_database(settings: Settings, database: Database) -> dict[str, object]:
    ensure_data_directories(settings)
    Base.metadata.create_all(bind=database.engine)
    return {"tables": sorted(Base.metadata.tables)}
