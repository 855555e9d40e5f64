from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import Principal, Role, can_see_all_stores, has_store_scope, resolve_target_store_id, scope_condition
from cmms.models import Store, Technician, TechnicianStatus, User
from cmms.services.parsing import is_valid_email, normalize_email
from cmms.services.serialization import model_to_dict
from cmms.services.user_service import create_user


TECHNICIAN_STATUSES = [status.value for status in TechnicianStatus]


def serialize_technician(technician: Technician, *, has_login: bool = False) -> dict:
    payload = model_to_dict(technician)
    payload['has_login'] = has_login
    return payload


def list_technicians(db: Session, *, principal: Principal, store_id: int | None = None) -> list[dict]:
    stmt = (
        select(Technician, User.id)
        .outerjoin(User, User.technician_id == Technician.id)
        .order_by(Technician.name.asc())
    )
    condition = scope_condition(Technician.store_id, principal, store_id)
    if condition is not None:
        stmt = stmt.where(condition)
    return [
        serialize_technician(technician, has_login=user_id is not None)
        for technician, user_id in db.execute(stmt).all()
    ]


def get_technician_for_principal(db: Session, *, principal: Principal, technician_id: int) -> Technician:
    technician = db.get(Technician, technician_id)
    if not technician:
        raise LookupError('Technician not found.')
    own_record = getattr(principal, 'technician_id', None) == technician.id
    if not own_record and not has_store_scope(principal, technician.store_id):
        raise PermissionError('Forbidden. You cannot access this technician.')
    return technician


def _clean_optional_email(value: str | None) -> str | None:
    clean_email = normalize_email(value)
    if not clean_email:
        return None
    if not is_valid_email(clean_email):
        raise ValueError('Invalid email address.')
    return clean_email


def create_technician(db: Session, *, principal: Principal, fields: dict) -> Technician:
    name = (fields.get('name') or '').strip()
    if not name:
        raise ValueError('Technician name is required.')

    requested_store_id = fields.get('store_id') if can_see_all_stores(principal.role) else None
    store_id = resolve_target_store_id(principal, requested_store_id)
    if not db.get(Store, store_id):
        raise ValueError('Store not found.')

    technician = Technician(
        name=name,
        email=_clean_optional_email(fields.get('email')),
        phone=(fields.get('phone') or '').strip() or None,
        store_id=store_id,
        active=True if fields.get('active') is None else fields['active'],
    )
    db.add(technician)
    db.flush()
    return technician


def update_technician(db: Session, *, principal: Principal, technician_id: int, fields: dict) -> Technician:
    technician = get_technician_for_principal(db, principal=principal, technician_id=technician_id)
    if 'name' in fields:
        name = (fields['name'] or '').strip()
        if not name:
            raise ValueError('Technician name is required.')
        technician.name = name
    if 'email' in fields:
        technician.email = _clean_optional_email(fields['email'])
    if 'phone' in fields:
        technician.phone = (fields['phone'] or '').strip() or None
    if fields.get('active') is not None:
        technician.active = fields['active']
    if 'store_id' in fields and can_see_all_stores(principal.role):
        if fields['store_id'] is not None and not db.get(Store, fields['store_id']):
            raise ValueError('Store not found.')
        technician.store_id = fields['store_id']
    db.flush()
    return technician


def delete_technician(db: Session, *, principal: Principal, technician_id: int) -> None:
    technician = get_technician_for_principal(db, principal=principal, technician_id=technician_id)
    if not has_store_scope(principal, technician.store_id):
        raise PermissionError('Forbidden. You cannot access this technician.')
    db.delete(technician)
    db.flush()


def set_technician_status(db: Session, *, principal: Principal, technician_id: int, status: str | None) -> Technician:
    technician = db.get(Technician, technician_id)
    if not technician:
        raise LookupError('Technician not found.')
    if getattr(principal, 'technician_id', None) != technician.id:
        raise PermissionError('You can only update your own status.')

    clean_status = (status or '').strip().lower()
    if clean_status not in TECHNICIAN_STATUSES:
        raise ValueError(f'Invalid status. Must be one of: {", ".join(TECHNICIAN_STATUSES)}')
    technician.status = TechnicianStatus(clean_status)
    db.flush()
    return technician


def create_technician_user(
    db: Session,
    *,
    principal: Principal,
    technician_id: int,
    email: str | None,
    password: str | None,
) -> User:
    technician = get_technician_for_principal(db, principal=principal, technician_id=technician_id)
    if technician.store_id is None:
        raise ValueError('Technician must be assigned to a store before a login can be created.')
    if db.execute(select(User.id).where(User.technician_id == technician.id)).first():
        raise ValueError('This technician already has a login.')

    user = create_user(
        db,
        principal=principal,
        email=email or technician.email,
        password=password,
        role=Role.TECHNICIAN.value,
        store_id=technician.store_id,
        name=technician.name,
        technician_id=technician.id,
    )
    if not technician.email:
        technician.email = user.email
    return user
