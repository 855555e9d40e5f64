from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import PublicWorkOrderIn, WorkOrderIn, WorkOrderStatusIn, WorkOrderUpdate
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.workorder_service import (
    change_work_order_status,
    create_public_work_order,
    create_share_link,
    create_work_order,
    delete_work_order,
    get_share_link,
    get_shared_work_order,
    get_work_order_detail,
    list_work_orders,
    revoke_share_link,
    serialize_work_order,
    update_work_order,
)

router = APIRouter(prefix='/workorders', tags=['workorders'])


@router.get('')
def work_orders_list(
    store_id: int | None = None,
    status: str | None = None,
    asset_id: int | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with service_errors():
        return ok(list_work_orders(db, principal=principal, store_id=store_id, status=status, asset_id=asset_id))


@router.post('', status_code=201)
def work_order_create(
    body: WorkOrderIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        work_order = create_work_order(db, principal=principal, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='WORK_ORDER_CREATED',
        ip=get_client_ip(request),
        store_id=work_order.store_id,
        metadata={'work_order_id': work_order.id, 'work_order_number': work_order.work_order_number},
    )
    db.commit()
    return ok(serialize_work_order(work_order))


@router.post('/public', status_code=201)
def work_order_public_create(body: PublicWorkOrderIn, request: Request, db: Session = Depends(get_db)):
    with service_errors():
        work_order = create_public_work_order(db, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=None,
        action='PUBLIC_WORK_ORDER_CREATED',
        ip=get_client_ip(request),
        store_id=work_order.store_id,
        metadata={'work_order_id': work_order.id, 'work_order_number': work_order.work_order_number},
    )
    db.commit()
    return ok(
        {'id': work_order.id, 'work_order_number': work_order.work_order_number},
        message='Work order submitted',
    )


@router.get('/shared/{token}')
def work_order_shared(token: str, db: Session = Depends(get_db)):
    with service_errors():
        return ok(get_shared_work_order(db, token=token))


@router.get('/{work_order_id}')
def work_order_detail(
    work_order_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with service_errors():
        return ok(get_work_order_detail(db, principal=principal, work_order_id=work_order_id))


@router.patch('/{work_order_id}')
def work_order_update(
    work_order_id: int,
    body: WorkOrderUpdate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    fields = body.model_dump(exclude_unset=True)
    with service_errors():
        work_order = update_work_order(db, principal=principal, work_order_id=work_order_id, fields=fields)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='WORK_ORDER_UPDATED',
        ip=get_client_ip(request),
        store_id=work_order.store_id,
        metadata={'work_order_id': work_order.id, 'fields': sorted(fields)},
    )
    db.commit()
    return ok(serialize_work_order(work_order))


@router.post('/{work_order_id}/status')
def work_order_status(
    work_order_id: int,
    body: WorkOrderStatusIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        work_order = change_work_order_status(db, principal=principal, work_order_id=work_order_id, status=body.status)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='WORK_ORDER_STATUS_CHANGED',
        ip=get_client_ip(request),
        store_id=work_order.store_id,
        metadata={'work_order_id': work_order.id, 'status': work_order.status.value},
    )
    db.commit()
    return ok(serialize_work_order(work_order))


@router.delete('/{work_order_id}')
def work_order_delete(
    work_order_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        delete_work_order(db, principal=principal, work_order_id=work_order_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='WORK_ORDER_DELETED',
        ip=get_client_ip(request),
        metadata={'work_order_id': work_order_id},
    )
    db.commit()
    return ok(None, message='Work order deleted')


@router.get('/{work_order_id}/share')
def work_order_share_get(
    work_order_id: int,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    with service_errors():
        return ok(get_share_link(db, principal=principal, work_order_id=work_order_id))


@router.post('/{work_order_id}/share')
def work_order_share_create(
    work_order_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        link = create_share_link(db, principal=principal, work_order_id=work_order_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='WORK_ORDER_SHARED',
        ip=get_client_ip(request),
        metadata={'work_order_id': work_order_id},
    )
    db.commit()
    return ok(link)


@router.delete('/{work_order_id}/share')
def work_order_share_revoke(
    work_order_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        revoke_share_link(db, principal=principal, work_order_id=work_order_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='WORK_ORDER_SHARE_REVOKED',
        ip=get_client_ip(request),
        metadata={'work_order_id': work_order_id},
    )
    db.commit()
    return ok(None, message='Share link revoked')
