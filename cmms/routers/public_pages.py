from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cmms.db import get_db
from cmms.dependencies import get_client_ip, get_templates
from cmms.models import Priority
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.store_service import get_public_store
from cmms.services.workorder_service import create_public_work_order, get_shared_work_order

router = APIRouter(tags=['public'])

PRIORITY_CHOICES = [priority.value for priority in Priority]


def _form_context(intake: dict, *, values: dict | None = None, error: str | None = None) -> dict:
    return {
        'store': intake['store'],
        'assets': intake['assets'],
        'priorities': PRIORITY_CHOICES,
        'values': values or {},
        'error': error,
    }


def _not_found(request: Request, message: str):
    return get_templates(request).TemplateResponse(
        request,
        'not_found.html',
        {'message': message},
        status_code=404,
    )


@router.get('/workorder-form/{qr_code}')
def workorder_form(qr_code: str, request: Request, db: Session = Depends(get_db)):
    try:
        intake = get_public_store(db, qr_code=qr_code)
    except LookupError:
        return _not_found(request, 'This QR code is not linked to a store.')
    return get_templates(request).TemplateResponse(
        request,
        'workorder_form.html',
        _form_context(intake),
    )


@router.post('/workorder-form/{qr_code}')
async def workorder_form_submit(
    qr_code: str,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        intake = get_public_store(db, qr_code=qr_code)
    except LookupError:
        return _not_found(request, 'This QR code is not linked to a store.')

    form = await request.form()
    values = {
        'title': str(form.get('title', '')).strip(),
        'problem_description': str(form.get('problem_description', '')).strip(),
        'help_description': str(form.get('help_description', '')).strip(),
        'priority': str(form.get('priority', '')).strip(),
        'asset_id': str(form.get('asset_id', '')).strip(),
        'parts_required': form.get('parts_required') in {'on', 'true', '1', 'yes'},
    }
    asset_id = int(values['asset_id']) if values['asset_id'].isdigit() else None
    try:
        if values['asset_id'] and asset_id is None:
            raise ValueError('Asset does not belong to this store.')
        work_order = create_public_work_order(db, fields=dict(values, qr_code=qr_code, asset_id=asset_id))
    except ValueError as exc:
        return get_templates(request).TemplateResponse(
            request,
            'workorder_form.html',
            _form_context(intake, values=values, error=str(exc)),
            status_code=400,
        )

    log_audit(
        db,
        actor_user_id=None,
        action='PUBLIC_WORK_ORDER_CREATED',
        ip=get_client_ip(request),
        store_id=work_order.store_id,
        metadata={'work_order_id': work_order.id, 'work_order_number': work_order.work_order_number},
    )
    db.commit()
    return get_templates(request).TemplateResponse(
        request,
        'workorder_form_done.html',
        {'store': intake['store'], 'work_order_number': work_order.work_order_number},
    )


@router.get('/share/workorder/{token}')
def shared_workorder_page(token: str, request: Request, db: Session = Depends(get_db)):
    try:
        work_order = get_shared_work_order(db, token=token)
    except LookupError:
        return _not_found(request, 'This share link is invalid or has been revoked.')
    return get_templates(request).TemplateResponse(
        request,
        'shared_workorder.html',
        {'work_order': work_order},
    )
