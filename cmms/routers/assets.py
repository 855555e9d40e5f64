from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import AssetIn
from cmms.security.csrf import verify_csrf
from cmms.services.asset_service import (
    create_asset,
    delete_asset,
    get_asset_for_principal,
    list_assets,
    serialize_asset,
    update_asset,
)
from cmms.services.audit_service import log_audit
from cmms.services.import_service import import_assets

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/assets', tags=['assets'])


@router.get('')
def assets_list(
    store_id: int | None = None,
    status: str | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        with service_errors():
            rows = list_assets(db, principal=principal, store_id=store_id, status=status)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to list assets')
        rows = []
    return ok(rows)


@router.post('', status_code=201)
def asset_create(
    body: AssetIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        asset = create_asset(db, principal=principal, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ASSET_CREATED',
        ip=get_client_ip(request),
        store_id=asset.store_id,
        metadata={'asset_id': asset.id, 'asset_number': asset.asset_number},
    )
    db.commit()
    return ok(serialize_asset(asset))


@router.post('/bulk-import')
async def assets_bulk_import(
    request: Request,
    file: UploadFile = File(...),
    store_id: int | None = Form(None),
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    content = await file.read()
    with service_errors():
        result = import_assets(db, principal=principal, store_id=store_id, filename=file.filename, content=content)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ASSETS_IMPORTED',
        ip=get_client_ip(request),
        store_id=store_id or principal.store_id,
        metadata={'filename': file.filename, 'success': result.success_count, 'failed': result.failed_count},
    )
    db.commit()
    return ok(result.as_dict())


@router.get('/{asset_id}')
def asset_detail(
    asset_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with service_errors():
        asset = get_asset_for_principal(db, principal=principal, asset_id=asset_id)
    return ok(serialize_asset(asset))


@router.patch('/{asset_id}')
def asset_update(
    asset_id: int,
    body: AssetIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    fields = body.model_dump(exclude_unset=True, exclude={'store_id'})
    with service_errors():
        asset = update_asset(db, principal=principal, asset_id=asset_id, fields=fields)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ASSET_UPDATED',
        ip=get_client_ip(request),
        store_id=asset.store_id,
        metadata={'asset_id': asset.id, 'fields': sorted(fields)},
    )
    db.commit()
    return ok(serialize_asset(asset))


@router.delete('/{asset_id}')
def asset_delete(
    asset_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        asset = get_asset_for_principal(db, principal=principal, asset_id=asset_id)
        store_id = asset.store_id
        delete_asset(db, principal=principal, asset_id=asset_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ASSET_DELETED',
        ip=get_client_ip(request),
        store_id=store_id,
        metadata={'asset_id': asset_id},
    )
    db.commit()
    return ok(None, message='Asset deleted')
