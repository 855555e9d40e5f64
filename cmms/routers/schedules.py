from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cmms.auth import Principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import ScheduleIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.pm_service import (
    create_schedule,
    delete_schedule,
    generate_due_work_orders,
    list_schedules,
    serialize_schedule,
    update_schedule,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=['schedules'])


@router.get('/schedules')
def schedules_list(
    store_id: int | None = None,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    try:
        rows = list_schedules(db, principal=principal, store_id=store_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to list preventive schedules')
        rows = []
    return ok(rows)


@router.post('/schedules', status_code=201)
def schedule_create(
    body: ScheduleIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        schedule = create_schedule(db, principal=principal, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='SCHEDULE_CREATED',
        ip=get_client_ip(request),
        store_id=schedule.store_id,
        metadata={'schedule_id': schedule.id, 'frequency_days': schedule.frequency_days},
    )
    db.commit()
    return ok(serialize_schedule(schedule))


@router.patch('/schedules/{schedule_id}')
def schedule_update(
    schedule_id: int,
    body: ScheduleIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    fields = body.model_dump(exclude_unset=True, exclude={'asset_id', 'store_id'})
    with service_errors():
        schedule = update_schedule(db, principal=principal, schedule_id=schedule_id, fields=fields)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='SCHEDULE_UPDATED',
        ip=get_client_ip(request),
        store_id=schedule.store_id,
        metadata={'schedule_id': schedule.id, 'fields': sorted(fields)},
    )
    db.commit()
    return ok(serialize_schedule(schedule))


@router.delete('/schedules/{schedule_id}')
def schedule_delete(
    schedule_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        delete_schedule(db, principal=principal, schedule_id=schedule_id)
    log_audit(db, actor_user_id=principal.id, action='SCHEDULE_DELETED', ip=get_client_ip(request), metadata={'schedule_id': schedule_id})
    db.commit()
    return ok(None, message='Schedule deleted')


def _run_roller(request: Request, principal: Principal, db: Session) -> dict:
    result = generate_due_work_orders(db, principal=principal)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='PM_ROLLER_RUN',
        ip=get_client_ip(request),
        store_id=principal.store_id,
        metadata={'processed': result.processed, 'generated': result.generated, 'failed': result.failed},
    )
    db.commit()
    return ok(
        {'processed': result.processed, 'generated': result.generated, 'failed': result.failed},
        message=f'Generated {result.generated} work order(s) from {result.processed} due schedule(s)',
    )


@router.post('/pm/generate-due')
def pm_generate_due(
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    return _run_roller(request, principal, db)


@router.post('/schedules/generate')
def schedules_generate(
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    return _run_roller(request, principal, db)
