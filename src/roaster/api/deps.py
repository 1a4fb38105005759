from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from roaster.core.orchestrator import CacheOrchestrator
from roaster.core.runtime import RoasterServices
from roaster.db.repositories import AccountRepository
from roaster.errors import AuthError


def get_services(request: Request) -> RoasterServices:
    return request.app.state.services


def get_db(services: RoasterServices = Depends(get_services)) -> Generator[Session, None, None]:
    yield from services.database.session_scope()


def get_orchestrator(
    db: Session = Depends(get_db),
    services: RoasterServices = Depends(get_services),
) -> CacheOrchestrator:
    return CacheOrchestrator(db, services)


def resolve_account(db: Session, user_id: int | None, *, required: bool = False) -> int | None:
    """Maps a caller-supplied user id onto a known account; anonymous callers get ``None``."""
    if user_id is None:
        if required:
            raise AuthError("userId is required")
        return None
    if AccountRepository(db).get(user_id) is None:
        raise AuthError("Unknown user")
    return user_id
