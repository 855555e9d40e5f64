from __future__ import annotations

from collections.abc import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from cmms.config import settings


engine = create_engine(settings.database_url_normalized, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def get_session_factory(request: Request) -> sessionmaker:
    return getattr(request.app.state, 'session_factory', SessionLocal)


def get_db(request: Request) -> Iterator[Session]:
    db = get_session_factory(request)()
    try:
        yield db
    finally:
        db.close()
