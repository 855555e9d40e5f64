from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import Principal, Role, can_see_all_stores, has_store_scope, resolve_target_store_id, scope_condition
from cmms.models import Store, User, Vendor
from cmms.services.parsing import is_valid_email, normalize_email
from cmms.services.serialization import model_to_dict
from cmms.services.user_service import create_user, email_in_use


def serialize_vendor(vendor: Vendor, *, has_login: bool = False, store_name: str | None = None) -> dict:
    payload = model_to_dict(vendor)
    payload['has_login'] = has_login
    payload['store_name'] = store_name
    return payload


def list_vendors(db: Session, *, principal: Principal, store_id: int | None = None) -> list[dict]:
    stmt = (
        select(Vendor, User.id, Store.name)
        .outerjoin(User, User.vendor_id == Vendor.id)
        .outerjoin(Store, Store.id == Vendor.store_id)
        .order_by(Vendor.name.asc())
    )
    condition = scope_condition(Vendor.store_id, principal, store_id)
    if condition is not None:
        stmt = stmt.where(condition)
    return [
        serialize_vendor(vendor, has_login=user_id is not None, store_name=store_name)
        for vendor, user_id, store_name in db.execute(stmt).all()
    ]


def vendor_email_taken(db: Session, email: str) -> bool:
    clean_email = normalize_email(email)
    if db.execute(select(Vendor.id).where(Vendor.email == clean_email)).first():
        return True
    return email_in_use(db, clean_email)


def create_vendor(db: Session, *, principal: Principal, fields: dict) -> Vendor:
    name = (fields.get('name') or '').strip()
    if not name:
        raise ValueError('Vendor name is required.')
    email = normalize_email(fields.get('email'))
    if not is_valid_email(email):
        raise ValueError('A valid email is required.')
    if vendor_email_taken(db, email):
        raise ValueError('Email is already in use.')

    requested_store_id = fields.get('store_id') if can_see_all_stores(principal.role) else None
    if requested_store_id is None and can_see_all_stores(principal.role):
        store_id = None
    else:
        store_id = resolve_target_store_id(principal, requested_store_id)
    if store_id is not None and not db.get(Store, store_id):
        raise ValueError('Store not found.')

    vendor = Vendor(
        name=name,
        email=email,
        phone=(fields.get('phone') or '').strip() or None,
        service_on=(fields.get('service_on') or '').strip() or None,
        note=(fields.get('note') or '').strip() or None,
        store_id=store_id,
        active=True,
    )
    db.add(vendor)
    db.flush()

    if fields.get('password'):
        create_vendor_user(db, principal=principal, vendor_id=vendor.id, password=fields['password'])
    return vendor


def create_vendor_user(db: Session, *, principal: Principal, vendor_id: int, password: str | None) -> User:
    vendor = db.get(Vendor, vendor_id)
    if not vendor:
        raise LookupError('Vendor not found.')
    if not has_store_scope(principal, vendor.store_id):
        raise PermissionError('Forbidden. You cannot access this vendor.')
    if vendor.store_id is None:
        raise ValueError('Vendor must be assigned to a store before a login can be created.')
    if db.execute(select(User.id).where(User.vendor_id == vendor.id)).first():
        raise ValueError('This vendor already has a login.')

    return create_user(
        db,
        principal=principal,
        email=vendor.email,
        password=password,
        role=Role.VENDOR.value,
        store_id=vendor.store_id,
        name=vendor.name,
        vendor_id=vendor.id,
    )
