from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cmms.auth import Principal, Role, require_admin_like, require_role
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import ResetPasswordIn, UserIn, UserUpdate
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.user_service import create_user, list_users, reset_user_password, serialize_user, update_user

router = APIRouter(prefix='/users', tags=['users'])
password_reset_access = require_role(Role.MASTER_ADMIN, Role.ADMIN)


@router.get('')
def users_list(
    store_id: int | None = None,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    return ok(list_users(db, principal=principal, store_id=store_id))


@router.post('', status_code=201)
def user_create(
    body: UserIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        user = create_user(
            db,
            principal=principal,
            email=body.email,
            password=body.password,
            role=body.role,
            store_id=body.store_id,
            name=body.name,
        )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_CREATED',
        ip=get_client_ip(request),
        store_id=user.store_id,
        metadata={'user_id': user.id, 'email': user.email, 'role': user.role.value},
    )
    db.commit()
    return ok(serialize_user(user))


@router.patch('/{user_id}')
def user_update(
    user_id: int,
    body: UserUpdate,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    fields = body.model_dump(exclude_unset=True)
    with service_errors():
        user = update_user(db, principal=principal, user_id=user_id, fields=fields)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_UPDATED',
        ip=get_client_ip(request),
        store_id=user.store_id,
        metadata={'user_id': user.id, 'fields': sorted(fields)},
    )
    db.commit()
    return ok(serialize_user(user))


@router.post('/{user_id}/reset-password')
def user_reset_password(
    user_id: int,
    body: ResetPasswordIn,
    request: Request,
    principal: Principal = Depends(password_reset_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        user = reset_user_password(db, user_id=user_id, new_password=body.new_password)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_PASSWORD_RESET',
        ip=get_client_ip(request),
        store_id=user.store_id,
        metadata={'user_id': user.id},
    )
    db.commit()
    return ok(None, message='Password reset')
