from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import CreateLoginIn, VendorIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.import_service import import_vendors, vendor_template_xlsx
from cmms.services.user_service import serialize_user
from cmms.services.vendor_service import create_vendor, create_vendor_user, list_vendors, serialize_vendor

router = APIRouter(prefix='/vendors', tags=['vendors'])

XLSX_MEDIA_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


@router.get('')
def vendors_list(
    store_id: int | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return ok(list_vendors(db, principal=principal, store_id=store_id))


@router.post('', status_code=201)
def vendor_create(
    body: VendorIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        vendor = create_vendor(db, principal=principal, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='VENDOR_CREATED',
        ip=get_client_ip(request),
        store_id=vendor.store_id,
        metadata={'vendor_id': vendor.id, 'email': vendor.email, 'with_login': bool(body.password)},
    )
    db.commit()
    return ok(serialize_vendor(vendor, has_login=bool(body.password)))


@router.get('/import/template')
def vendor_import_template(principal: Principal = Depends(require_admin_like)):
    return Response(
        content=vendor_template_xlsx(),
        media_type=XLSX_MEDIA_TYPE,
        headers={'Content-Disposition': 'attachment; filename="vendor-import-template.xlsx"'},
    )


@router.post('/import')
async def vendor_import(
    request: Request,
    file: UploadFile = File(...),
    store_id: int | None = Form(None),
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    content = await file.read()
    with service_errors():
        result = import_vendors(db, principal=principal, store_id=store_id, filename=file.filename, content=content)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='VENDORS_IMPORTED',
        ip=get_client_ip(request),
        store_id=store_id or principal.store_id,
        metadata={'filename': file.filename, 'success': result.success_count, 'failed': result.failed_count},
    )
    db.commit()
    return ok(result.as_dict())


@router.post('/{vendor_id}/create-user', status_code=201)
def vendor_create_user(
    vendor_id: int,
    body: CreateLoginIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        user = create_vendor_user(db, principal=principal, vendor_id=vendor_id, password=body.password)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='VENDOR_LOGIN_CREATED',
        ip=get_client_ip(request),
        store_id=user.store_id,
        metadata={'vendor_id': vendor_id, 'user_id': user.id},
    )
    db.commit()
    return ok(serialize_user(user))
