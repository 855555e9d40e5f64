from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cmms.auth import Principal, Role, has_store_scope, is_master_admin, scope_condition
from cmms.models import Store, User
from cmms.security.passwords import hash_password, validate_new_password
from cmms.services.parsing import is_valid_email, normalize_email
from cmms.services.serialization import model_to_dict


STORE_ADMIN_ASSIGNABLE_ROLES = {Role.TECHNICIAN, Role.VENDOR, Role.USER}


def serialize_user(user: User) -> dict:
    return model_to_dict(user, exclude={'password_hash'})


def parse_role(value: str | None) -> Role:
    clean_value = (value or '').strip().upper()
    try:
        return Role(clean_value)
    except ValueError as exc:
        raise ValueError(f'Invalid role. Must be one of: {", ".join(role.value for role in Role)}') from exc


def find_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def email_in_use(db: Session, email: str) -> bool:
    return find_user_by_email(db, email) is not None


def list_users(db: Session, *, principal: Principal, store_id: int | None = None) -> list[dict]:
    stmt = select(User).order_by(User.email.asc())
    condition = scope_condition(User.store_id, principal, store_id)
    if condition is not None:
        stmt = stmt.where(condition)
    return [serialize_user(user) for user in db.execute(stmt).scalars().all()]


def _check_assignable(principal: Principal, role: Role, store_id: int | None) -> None:
    if is_master_admin(principal.role):
        return
    if role not in STORE_ADMIN_ASSIGNABLE_ROLES:
        raise PermissionError('Forbidden. You cannot assign this role.')
    if not has_store_scope(principal, store_id):
        raise PermissionError('Forbidden. You cannot access this store.')


def create_user(
    db: Session,
    *,
    principal: Principal,
    email: str | None,
    password: str | None,
    role: str | None,
    store_id: int | None,
    name: str | None = None,
    technician_id: int | None = None,
    vendor_id: int | None = None,
) -> User:
    clean_email = normalize_email(email)
    if not is_valid_email(clean_email):
        raise ValueError('A valid email is required.')
    validate_new_password(password)
    parsed_role = parse_role(role)

    if not is_master_admin(principal.role) and store_id is None:
        store_id = principal.store_id
    _check_assignable(principal, parsed_role, store_id)
    if parsed_role != Role.MASTER_ADMIN and store_id is None:
        raise ValueError('store_id is required for this role.')
    if store_id is not None and not db.get(Store, store_id):
        raise ValueError('Store not found.')
    if email_in_use(db, clean_email):
        raise ValueError('Email is already in use.')

    user = User(
        email=clean_email,
        name=(name or '').strip() or None,
        password_hash=hash_password(password),
        role=parsed_role,
        store_id=store_id,
        technician_id=technician_id,
        vendor_id=vendor_id,
        active=True,
    )
    db.add(user)
    db.flush()
    return user


def _active_master_admin_count(db: Session) -> int:
    return db.execute(
        select(func.count()).select_from(User).where(User.role == Role.MASTER_ADMIN, User.active.is_(True))
    ).scalar_one()


def update_user(db: Session, *, principal: Principal, user_id: int, fields: dict) -> User:
    user = db.get(User, user_id)
    if not user:
        raise LookupError('User not found.')
    if not has_store_scope(principal, user.store_id):
        raise PermissionError('Forbidden. You cannot access this user.')

    new_role = parse_role(fields['role']) if fields.get('role') else user.role
    new_store_id = fields['store_id'] if 'store_id' in fields else user.store_id
    new_active = fields['active'] if fields.get('active') is not None else user.active

    if new_role != user.role or new_store_id != user.store_id:
        _check_assignable(principal, new_role, new_store_id)
    if new_store_id is not None and not db.get(Store, new_store_id):
        raise ValueError('Store not found.')

    losing_master = user.role == Role.MASTER_ADMIN and user.active and (new_role != Role.MASTER_ADMIN or not new_active)
    if losing_master and _active_master_admin_count(db) <= 1:
        raise ValueError('Cannot remove the last master admin.')

    user.role = new_role
    user.store_id = new_store_id
    user.active = new_active
    if 'name' in fields:
        user.name = (fields['name'] or '').strip() or None
    db.flush()
    return user


def reset_user_password(db: Session, *, user_id: int, new_password: str | None) -> User:
    user = db.get(User, user_id)
    if not user:
        raise LookupError('User not found.')
    user.password_hash = hash_password(validate_new_password(new_password))
    db.flush()
    return user
