from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, resolve_target_store_id
from cmms.db import get_db
from cmms.dependencies import ok, service_errors
from cmms.security.csrf import verify_csrf
from cmms.services.store_service import get_store_by_qr_code
from cmms.services.upload_service import store_upload

router = APIRouter(prefix='/upload', tags=['uploads'])


@router.post('', status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    store_id: int | None = Form(None),
    file_type: str | None = Form(None),
    principal: Principal = Depends(get_current_principal),
    _: None = Depends(verify_csrf),
):
    content = await file.read()
    with service_errors():
        target_store_id = resolve_target_store_id(principal, store_id)
        stored = store_upload(
            store_id=target_store_id,
            content=content,
            content_type=file.content_type,
            filename=file.filename,
            file_type=file_type,
        )
    return ok(stored)


@router.post('/public', status_code=201)
async def upload_public_file(
    file: UploadFile = File(...),
    qr_code: str = Form(''),
    db: Session = Depends(get_db),
):
    content = await file.read()
    with service_errors():
        store = get_store_by_qr_code(db, qr_code)
        stored = store_upload(
            store_id=store.id,
            content=content,
            content_type=file.content_type,
            filename=file.filename,
        )
    return ok(stored)
