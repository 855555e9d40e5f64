from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from cmms.auth import Principal, require_master_admin
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import ReportIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.report_service import (
    build_store_report,
    list_store_reports,
    store_report_path,
    write_store_report,
)

router = APIRouter(prefix='/reports', tags=['reports'])


@router.post('/generate', status_code=201)
def report_generate(
    body: ReportIn,
    request: Request,
    principal: Principal = Depends(require_master_admin),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    if body.store_id is None:
        raise HTTPException(status_code=400, detail='store_id is required.')
    with service_errors():
        report = build_store_report(db, store_id=body.store_id, start_date=body.start_date, end_date=body.end_date)
    stored = write_store_report(report)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REPORT_GENERATED',
        ip=get_client_ip(request),
        store_id=body.store_id,
        metadata={'name': stored['name']},
    )
    db.commit()
    return ok(dict(stored, report=report))


@router.get('/list')
def reports_list(
    store_id: int | None = None,
    principal: Principal = Depends(require_master_admin),
):
    return ok(list_store_reports(store_id=store_id))


@router.get('/{store_id}/{name}')
def report_download(
    store_id: int,
    name: str,
    principal: Principal = Depends(require_master_admin),
):
    with service_errors():
        path = store_report_path(store_id=store_id, name=name)
    return FileResponse(path, media_type='application/json', filename=name)
