from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from roaster.config import Settings


class Database:
    """Engine and session factory, constructed once per process and passed around explicitly."""

    def __init__(self, database_url: str):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.url = database_url
        self.engine: Engine = create_engine(database_url, connect_args=connect_args, future=True)
        self.sessionmaker = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> Database:
        return cls(settings.database_url)

    def session(self) -> Session:
        return self.sessionmaker()

    def session_scope(self) -> Generator[Session, None, None]:
        db = self.sessionmaker()
        try:
            yield db
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()
