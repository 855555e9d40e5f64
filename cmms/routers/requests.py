from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import RequestConvertIn, RequestIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.request_service import (
    approve_request,
    convert_request,
    create_request,
    get_request_for_principal,
    list_requests,
    reject_request,
    serialize_request,
    update_request,
)
from cmms.services.workorder_service import serialize_work_order

router = APIRouter(prefix='/requests', tags=['requests'])


@router.get('')
def requests_list(
    store_id: int | None = None,
    status: str | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with service_errors():
        return ok(list_requests(db, principal=principal, store_id=store_id, status=status))


@router.post('', status_code=201)
def request_create(
    body: RequestIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        request_row = create_request(db, principal=principal, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REQUEST_CREATED',
        ip=get_client_ip(request),
        store_id=request_row.store_id,
        metadata={'request_id': request_row.id, 'request_number': request_row.request_number},
    )
    db.commit()
    return ok(serialize_request(request_row))


@router.get('/{request_id}')
def request_detail(
    request_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with service_errors():
        request_row = get_request_for_principal(db, principal=principal, request_id=request_id)
    return ok(serialize_request(request_row))


@router.patch('/{request_id}')
def request_update(
    request_id: int,
    body: RequestIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        request_row = update_request(db, principal=principal, request_id=request_id, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REQUEST_UPDATED',
        ip=get_client_ip(request),
        store_id=request_row.store_id,
        metadata={'request_id': request_row.id},
    )
    db.commit()
    return ok(serialize_request(request_row))


@router.post('/{request_id}/approve')
def request_approve(
    request_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        request_row = approve_request(db, principal=principal, request_id=request_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REQUEST_APPROVED',
        ip=get_client_ip(request),
        store_id=request_row.store_id,
        metadata={'request_id': request_row.id},
    )
    db.commit()
    return ok(serialize_request(request_row))


@router.post('/{request_id}/reject')
def request_reject(
    request_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        request_row = reject_request(db, principal=principal, request_id=request_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REQUEST_REJECTED',
        ip=get_client_ip(request),
        store_id=request_row.store_id,
        metadata={'request_id': request_row.id},
    )
    db.commit()
    return ok(serialize_request(request_row))


@router.post('/{request_id}/convert', status_code=201)
def request_convert(
    request_id: int,
    body: RequestConvertIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        work_order = convert_request(db, principal=principal, request_id=request_id, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REQUEST_CONVERTED',
        ip=get_client_ip(request),
        store_id=work_order.store_id,
        metadata={'request_id': request_id, 'work_order_id': work_order.id},
    )
    db.commit()
    return ok(serialize_work_order(work_order))
