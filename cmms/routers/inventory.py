from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import InventoryItemIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.import_service import import_inventory
from cmms.services.inventory_service import (
    create_inventory_item,
    delete_inventory_item,
    get_inventory_item_for_principal,
    list_inventory,
    serialize_inventory_item,
    update_inventory_item,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/inventory', tags=['inventory'])


@router.get('')
def inventory_list(
    store_id: int | None = None,
    low_stock: bool = False,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        rows = list_inventory(db, principal=principal, store_id=store_id, low_stock_only=low_stock)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to list inventory')
        rows = []
    return ok(rows)


@router.post('', status_code=201)
def inventory_create(
    body: InventoryItemIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        item = create_inventory_item(db, principal=principal, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INVENTORY_ITEM_CREATED',
        ip=get_client_ip(request),
        store_id=item.store_id,
        metadata={'inventory_item_id': item.id, 'name': item.name},
    )
    db.commit()
    return ok(serialize_inventory_item(item))


@router.post('/bulk-import')
async def inventory_bulk_import(
    request: Request,
    file: UploadFile = File(...),
    store_id: int | None = Form(None),
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    content = await file.read()
    with service_errors():
        result = import_inventory(db, principal=principal, store_id=store_id, filename=file.filename, content=content)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INVENTORY_IMPORTED',
        ip=get_client_ip(request),
        store_id=store_id or principal.store_id,
        metadata={'filename': file.filename, 'success': result.success_count, 'failed': result.failed_count},
    )
    db.commit()
    return ok(result.as_dict())


@router.get('/{item_id}')
def inventory_detail(
    item_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with service_errors():
        item = get_inventory_item_for_principal(db, principal=principal, item_id=item_id)
    return ok(serialize_inventory_item(item))


@router.patch('/{item_id}')
def inventory_update(
    item_id: int,
    body: InventoryItemIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    fields = body.model_dump(exclude_unset=True, exclude={'store_id'})
    with service_errors():
        item = update_inventory_item(db, principal=principal, item_id=item_id, fields=fields)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INVENTORY_ITEM_UPDATED',
        ip=get_client_ip(request),
        store_id=item.store_id,
        metadata={'inventory_item_id': item.id, 'fields': sorted(fields)},
    )
    db.commit()
    return ok(serialize_inventory_item(item))


@router.delete('/{item_id}')
def inventory_delete(
    item_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        item = get_inventory_item_for_principal(db, principal=principal, item_id=item_id)
        store_id = item.store_id
        delete_inventory_item(db, principal=principal, item_id=item_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INVENTORY_ITEM_DELETED',
        ip=get_client_ip(request),
        store_id=store_id,
        metadata={'inventory_item_id': item_id},
    )
    db.commit()
    return ok(None, message='Inventory item deleted')
