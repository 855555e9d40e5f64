from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.models import User
from cmms.schemas import CreateLoginIn, TechnicianIn, TechnicianStatusIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.technician_service import (
    create_technician,
    create_technician_user,
    delete_technician,
    get_technician_for_principal,
    list_technicians,
    serialize_technician,
    set_technician_status,
    update_technician,
)
from cmms.services.user_service import serialize_user

router = APIRouter(prefix='/technicians', tags=['technicians'])


def _has_login(db: Session, technician_id: int) -> bool:
    return db.execute(select(User.id).where(User.technician_id == technician_id)).first() is not None


@router.get('')
def technicians_list(
    store_id: int | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return ok(list_technicians(db, principal=principal, store_id=store_id))


@router.post('', status_code=201)
def technician_create(
    body: TechnicianIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        technician = create_technician(db, principal=principal, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='TECHNICIAN_CREATED',
        ip=get_client_ip(request),
        store_id=technician.store_id,
        metadata={'technician_id': technician.id, 'name': technician.name},
    )
    db.commit()
    return ok(serialize_technician(technician))


@router.get('/{technician_id}')
def technician_detail(
    technician_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with service_errors():
        technician = get_technician_for_principal(db, principal=principal, technician_id=technician_id)
    return ok(serialize_technician(technician, has_login=_has_login(db, technician.id)))


@router.patch('/{technician_id}')
def technician_update(
    technician_id: int,
    body: TechnicianIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    fields = body.model_dump(exclude_unset=True)
    with service_errors():
        technician = update_technician(db, principal=principal, technician_id=technician_id, fields=fields)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='TECHNICIAN_UPDATED',
        ip=get_client_ip(request),
        store_id=technician.store_id,
        metadata={'technician_id': technician.id, 'fields': sorted(fields)},
    )
    db.commit()
    return ok(serialize_technician(technician, has_login=_has_login(db, technician.id)))


@router.delete('/{technician_id}')
def technician_delete(
    technician_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        delete_technician(db, principal=principal, technician_id=technician_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='TECHNICIAN_DELETED',
        ip=get_client_ip(request),
        metadata={'technician_id': technician_id},
    )
    db.commit()
    return ok(None, message='Technician deleted')


@router.patch('/{technician_id}/status')
def technician_status(
    technician_id: int,
    body: TechnicianStatusIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        technician = set_technician_status(db, principal=principal, technician_id=technician_id, status=body.status)
    db.commit()
    return ok(serialize_technician(technician, has_login=True))


@router.post('/{technician_id}/create-user', status_code=201)
def technician_create_user(
    technician_id: int,
    body: CreateLoginIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        user = create_technician_user(
            db,
            principal=principal,
            technician_id=technician_id,
            email=body.email,
            password=body.password,
        )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='TECHNICIAN_LOGIN_CREATED',
        ip=get_client_ip(request),
        store_id=user.store_id,
        metadata={'technician_id': technician_id, 'user_id': user.id},
    )
    db.commit()
    return ok(serialize_user(user))
