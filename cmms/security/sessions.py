from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from sqlalchemy import select

from cmms.auth import Principal, principal_from_user
from cmms.config import settings
from cmms.db import SessionLocal
from cmms.models import SessionKind, User, WebSession


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_ttl(kind: SessionKind) -> timedelta:
    if kind == SessionKind.MOBILE:
        return timedelta(days=settings.mobile_token_ttl_days)
    return timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(
    db,
    user_id: int,
    ip: str | None,
    user_agent: str | None,
    kind: SessionKind = SessionKind.WEB,
) -> str:
    token = secrets.token_urlsafe(48)
    web_session = WebSession(
        session_token=token,
        user_id=user_id,
        kind=kind,
        ip=ip,
        user_agent=user_agent,
        expires_at=_now() + _session_ttl(kind),
    )
    db.add(web_session)
    db.flush()
    return token


def revoke_web_session(db, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = _now()


def load_principal_from_token(db, token: str | None) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, User)
        .join(User, User.id == WebSession.user_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, user = row
    now = _now()
    if web_session.revoked_at is not None or _as_utc(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    if web_session.kind == SessionKind.WEB:
        # Web sessions slide; mobile tokens keep their fixed lifetime.
        web_session.expires_at = now + _session_ttl(SessionKind.WEB)
    return principal_from_user(user)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get('authorization', '')
    scheme, _, value = header.partition(' ')
    if scheme.lower() == 'bearer' and value.strip():
        return value.strip()
    return None


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        bearer = _bearer_token(request)
        token = bearer or request.cookies.get(settings.session_cookie_name)
        request.state.auth_source = None
        request.state.principal = None

        if token:
            session_factory = getattr(request.app.state, 'session_factory', SessionLocal)
            with session_factory() as db:
                principal = load_principal_from_token(db, token)
                db.commit()
            request.state.principal = principal
            if principal is not None:
                request.state.auth_source = 'bearer' if bearer else 'cookie'

        return await call_next(request)
