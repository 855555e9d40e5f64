from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import false

from cmms.models import UserRole


Role = UserRole

ADMIN_LIKE_ROLES = {Role.MASTER_ADMIN.value, Role.STORE_ADMIN.value, Role.ADMIN.value}


@dataclass(frozen=True)
class Principal:
    id: int
    email: str
    role: Role
    store_id: int | None
    name: str | None = None
    active: bool = True


@dataclass(frozen=True)
class MasterAdminPrincipal(Principal):
    pass


@dataclass(frozen=True)
class StoreAdminPrincipal(Principal):
    pass


@dataclass(frozen=True)
class AdminPrincipal(Principal):
    """Legacy admin role; treated as admin-like but scoped to its own store."""


@dataclass(frozen=True)
class TechnicianPrincipal(Principal):
    technician_id: int | None = None


@dataclass(frozen=True)
class VendorPrincipal(Principal):
    vendor_id: int | None = None


@dataclass(frozen=True)
class UserPrincipal(Principal):
    pass


def _normalize_role(role: Role | str | None) -> str:
    if role is None:
        return ''
    if isinstance(role, Enum):
        role = role.value
    return str(role).strip().upper()


def is_master_admin(role: Role | str | None) -> bool:
    return _normalize_role(role) == Role.MASTER_ADMIN.value


def is_store_admin(role: Role | str | None) -> bool:
    return _normalize_role(role) == Role.STORE_ADMIN.value


def is_admin_like(role: Role | str | None) -> bool:
    # ADMIN is kept as a supported legacy admin role.
    return _normalize_role(role) in ADMIN_LIKE_ROLES


def is_technician(role: Role | str | None) -> bool:
    return _normalize_role(role) == Role.TECHNICIAN.value


def is_vendor(role: Role | str | None) -> bool:
    return _normalize_role(role) == Role.VENDOR.value


def is_user(role: Role | str | None) -> bool:
    return _normalize_role(role) == Role.USER.value


def can_create_work_orders(role: Role | str | None) -> bool:
    return is_admin_like(role) or is_user(role)


def can_create_requests(role: Role | str | None) -> bool:
    return is_admin_like(role) or is_user(role) or is_vendor(role)


def can_see_all_stores(role: Role | str | None) -> bool:
    return is_master_admin(role)


def get_scoped_store_id(role: Role | str | None, user_store_id: int | None) -> int | None:
    if can_see_all_stores(role):
        return None
    return user_store_id


_PRINCIPAL_TYPES = {
    Role.MASTER_ADMIN.value: MasterAdminPrincipal,
    Role.STORE_ADMIN.value: StoreAdminPrincipal,
    Role.ADMIN.value: AdminPrincipal,
    Role.TECHNICIAN.value: TechnicianPrincipal,
    Role.VENDOR.value: VendorPrincipal,
    Role.USER.value: UserPrincipal,
}


def principal_from_user(user) -> Principal | None:
    role_key = _normalize_role(user.role)
    principal_cls = _PRINCIPAL_TYPES.get(role_key)
    if principal_cls is None:
        return None

    kwargs = {
        'id': user.id,
        'email': user.email,
        'role': Role(role_key),
        'store_id': user.store_id,
        'name': user.name,
        'active': user.active,
    }
    if principal_cls is TechnicianPrincipal:
        kwargs['technician_id'] = user.technician_id
    if principal_cls is VendorPrincipal:
        kwargs['vendor_id'] = user.vendor_id
    return principal_cls(**kwargs)


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized')
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')
    return principal


def get_optional_principal(request: Request) -> Principal | None:
    principal = getattr(request.state, 'principal', None)
    if principal and principal.active:
        return principal
    return None


def require_role(*allowed: Role):
    allowed_values = {role.value for role in allowed}

    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if _normalize_role(principal.role) not in allowed_values:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')
        return principal

    return _dep


def require_admin_like(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not is_admin_like(principal.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')
    return principal


require_master_admin = require_role(Role.MASTER_ADMIN)


def has_store_scope(principal: Principal, target_store_id: int | None) -> bool:
    if can_see_all_stores(principal.role):
        return True
    return principal.store_id is not None and principal.store_id == target_store_id


def assert_store_scope(principal: Principal, target_store_id: int | None) -> None:
    if not has_store_scope(principal, target_store_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')


def scope_condition(column, principal: Principal, requested_store_id: int | None = None):
    """Build the WHERE clause restricting `column` to the stores `principal` may see.

    Returns None when no restriction applies. A non-master principal without a
    store gets a condition that matches nothing.
    """
    if can_see_all_stores(principal.role):
        if requested_store_id is not None:
            return column == requested_store_id
        return None

    scoped_store_id = get_scoped_store_id(principal.role, principal.store_id)
    if scoped_store_id is None:
        return false()
    return column == scoped_store_id


def resolve_target_store_id(principal: Principal, body_store_id: int | None) -> int:
    """Pick the store a create operation writes into."""
    if can_see_all_stores(principal.role):
        if body_store_id is None:
            raise ValueError('store_id is required for master admins.')
        return body_store_id

    if principal.store_id is None:
        raise ValueError('User has no store assigned.')
    if body_store_id is not None and body_store_id != principal.store_id:
        raise PermissionError('Forbidden. You cannot access this store.')
    return principal.store_id
