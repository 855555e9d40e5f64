from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cmms.auth import Role, principal_from_user
from cmms.models import Asset, Base, SessionKind, Store, User, WebSession
from cmms.security.passwords import hash_password
from cmms.services.sequence_service import asset_scope, next_sequence_value


def make_session_factory() -> sessionmaker:
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def add_store(db, *, name: str = 'Downtown', code: str | None = None, qr_code: str | None = None) -> Store:
    store = Store(name=name, code=code, qr_code=qr_code)
    db.add(store)
    db.flush()
    return store


def add_user(
    db,
    *,
    email: str,
    role: Role,
    store_id: int | None = None,
    password: str | None = None,
    **extra,
) -> User:
    user = User(
        email=email,
        password_hash=hash_password(password) if password else 'not-a-real-hash',
        role=role,
        store_id=store_id,
        active=True,
        **extra,
    )
    db.add(user)
    db.flush()
    return user


def add_asset(db, *, store_id: int, name: str = 'Walk-in Cooler') -> Asset:
    asset = Asset(
        asset_number=next_sequence_value(db, asset_scope(store_id)),
        name=name,
        location='Back room',
        store_id=store_id,
    )
    db.add(asset)
    db.flush()
    return asset


def principal_for(user: User):
    return principal_from_user(user)


def bearer_token(db, user: User, *, kind: SessionKind = SessionKind.WEB) -> str:
    token = f'test-token-{user.id}-{kind.value.lower()}'
    db.add(
        WebSession(
            session_token=token,
            user_id=user.id,
            kind=kind,
            expires_at=datetime.now(tz=timezone.utc) + timedelta(hours=1),
        )
    )
    db.flush()
    return token
