from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cmms.auth import Principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import PurchaseOrderIn, PurchaseOrderStatusIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.purchase_order_service import (
    create_purchase_order,
    get_purchase_order,
    list_purchase_orders,
    purchase_order_detail,
    receive_purchase_order,
    set_purchase_order_status,
)

router = APIRouter(prefix='/purchase-orders', tags=['purchase-orders'])


@router.get('')
def purchase_orders_list(
    store_id: int | None = None,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    with service_errors():
        return ok(list_purchase_orders(db, principal=principal, store_id=store_id or principal.store_id))


@router.post('', status_code=201)
def purchase_order_create(
    body: PurchaseOrderIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        po = create_purchase_order(db, principal=principal, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='PURCHASE_ORDER_CREATED',
        ip=get_client_ip(request),
        store_id=po.store_id,
        metadata={'purchase_order_id': po.id, 'po_number': po.po_number, 'total': str(po.total)},
    )
    db.commit()
    return ok(purchase_order_detail(db, po))


@router.get('/{purchase_order_id}')
def purchase_order_get(
    purchase_order_id: int,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    with service_errors():
        po = get_purchase_order(db, principal=principal, purchase_order_id=purchase_order_id)
    return ok(purchase_order_detail(db, po))


@router.post('/{purchase_order_id}/status')
def purchase_order_status(
    purchase_order_id: int,
    body: PurchaseOrderStatusIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        po = set_purchase_order_status(db, principal=principal, purchase_order_id=purchase_order_id, status=body.status)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='PURCHASE_ORDER_STATUS_CHANGED',
        ip=get_client_ip(request),
        store_id=po.store_id,
        metadata={'purchase_order_id': po.id, 'status': po.status.value},
    )
    db.commit()
    return ok(purchase_order_detail(db, po))


@router.post('/{purchase_order_id}/receive')
def purchase_order_receive(
    purchase_order_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        po = receive_purchase_order(db, principal=principal, purchase_order_id=purchase_order_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='PURCHASE_ORDER_RECEIVED',
        ip=get_client_ip(request),
        store_id=po.store_id,
        metadata={'purchase_order_id': po.id, 'po_number': po.po_number},
    )
    db.commit()
    return ok(purchase_order_detail(db, po))
