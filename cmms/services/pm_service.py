"""Preventive maintenance schedules and the due-date roller.

The roller turns every active schedule whose next due date has arrived into a
work order titled ``PM: <schedule title>`` and then rolls the schedule forward
by whole frequency periods until it lands after today. A schedule that already
has an open or in-progress PM work order for the same asset is rolled forward
without creating a duplicate, so running the roller twice on the same day is
harmless.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cmms.auth import Principal, can_see_all_stores, has_store_scope, scope_condition
from cmms.models import Asset, Priority, PreventiveSchedule, Store, WorkOrder, WorkOrderStatus
from cmms.services.sequence_service import WORK_ORDER_SCOPE, next_sequence_value
from cmms.services.serialization import model_to_dict
from cmms.services.workorder_service import ACTIVE_STATUSES


logger = logging.getLogger(__name__)

PM_TITLE_PREFIX = 'PM: '


@dataclass(frozen=True)
class RollerResult:
    processed: int
    generated: int
    failed: int = 0


def pm_work_order_title(schedule_title: str) -> str:
    return f'{PM_TITLE_PREFIX}{schedule_title}'


def roll_forward(next_due: date, frequency_days: int, today: date) -> date:
    """Advance `next_due` by whole periods until it is strictly after `today`."""
    if frequency_days <= 0:
        raise ValueError('Frequency must be a positive number of days.')
    if next_due > today:
        return next_due
    periods = (today - next_due).days // frequency_days + 1
    return next_due + timedelta(days=periods * frequency_days)


def serialize_schedule(schedule: PreventiveSchedule, *, asset_name: str | None = None, today: date | None = None) -> dict:
    today = today or date.today()
    payload = model_to_dict(schedule)
    days_until_due = (schedule.next_due_date - today).days
    payload['asset_name'] = asset_name
    payload['days_until_due'] = days_until_due
    payload['due'] = schedule.active and days_until_due <= 0
    return payload


def list_schedules(
    db: Session,
    *,
    principal: Principal,
    store_id: int | None = None,
    today: date | None = None,
) -> list[dict]:
    stmt = (
        select(PreventiveSchedule, Asset.name)
        .join(Asset, Asset.id == PreventiveSchedule.asset_id)
        .order_by(PreventiveSchedule.next_due_date.asc(), PreventiveSchedule.id.asc())
    )
    condition = scope_condition(PreventiveSchedule.store_id, principal, store_id)
    if condition is not None:
        stmt = stmt.where(condition)
    return [serialize_schedule(schedule, asset_name=asset_name, today=today) for schedule, asset_name in db.execute(stmt).all()]


def _get_schedule(db: Session, principal: Principal, schedule_id: int) -> PreventiveSchedule:
    schedule = db.get(PreventiveSchedule, schedule_id)
    if not schedule:
        raise LookupError('Schedule not found.')
    if not has_store_scope(principal, schedule.store_id):
        raise PermissionError('Forbidden. You cannot access this schedule.')
    return schedule


def _validate_frequency(value) -> int:
    if value is None:
        raise ValueError('Frequency (days) is required.')
    if int(value) <= 0:
        raise ValueError('Frequency must be a positive number of days.')
    return int(value)


def create_schedule(db: Session, *, principal: Principal, fields: dict) -> PreventiveSchedule:
    title = (fields.get('title') or '').strip()
    if not title:
        raise ValueError('Title is required.')
    if fields.get('asset_id') is None:
        raise ValueError('Asset is required.')
    frequency_days = _validate_frequency(fields.get('frequency_days'))
    if fields.get('next_due_date') is None:
        raise ValueError('Next due date is required.')

    asset = db.get(Asset, fields['asset_id'])
    if not asset:
        raise ValueError('Asset not found.')
    if not has_store_scope(principal, asset.store_id):
        raise PermissionError('Forbidden. You cannot access this asset.')
    store_id = fields.get('store_id') if can_see_all_stores(principal.role) and fields.get('store_id') else asset.store_id
    if store_id != asset.store_id:
        raise ValueError('Selected asset does not belong to the chosen store.')

    schedule = PreventiveSchedule(
        title=title,
        asset_id=asset.id,
        store_id=store_id,
        frequency_days=frequency_days,
        next_due_date=fields['next_due_date'],
        active=True if fields.get('active') is None else fields['active'],
    )
    db.add(schedule)
    db.flush()
    return schedule


def update_schedule(db: Session, *, principal: Principal, schedule_id: int, fields: dict) -> PreventiveSchedule:
    schedule = _get_schedule(db, principal, schedule_id)
    if 'title' in fields:
        title = (fields['title'] or '').strip()
        if not title:
            raise ValueError('Title is required.')
        schedule.title = title
    if 'frequency_days' in fields:
        schedule.frequency_days = _validate_frequency(fields['frequency_days'])
    if fields.get('next_due_date') is not None:
        schedule.next_due_date = fields['next_due_date']
    if fields.get('active') is not None:
        schedule.active = fields['active']
    db.flush()
    return schedule


def delete_schedule(db: Session, *, principal: Principal, schedule_id: int) -> None:
    schedule = _get_schedule(db, principal, schedule_id)
    db.delete(schedule)
    db.flush()


def _has_open_pm_work_order(db: Session, *, asset_id: int, title: str) -> bool:
    return (
        db.execute(
            select(WorkOrder.id).where(
                WorkOrder.asset_id == asset_id,
                WorkOrder.title == title,
                WorkOrder.status.in_(ACTIVE_STATUSES),
            )
        ).first()
        is not None
    )


def _process_schedule(db: Session, *, schedule_id: int, actor_user_id: int | None, today: date) -> bool:
    """Handle one due schedule; returns True when a work order was created."""
    schedule = db.get(PreventiveSchedule, schedule_id)
    asset = db.get(Asset, schedule.asset_id)
    title = pm_work_order_title(schedule.title)

    created = False
    if asset is not None and not _has_open_pm_work_order(db, asset_id=asset.id, title=title):
        store_id = schedule.store_id or asset.store_id
        db.add(
            WorkOrder(
                work_order_number=next_sequence_value(db, WORK_ORDER_SCOPE),
                title=title,
                description=f'Preventive maintenance every {schedule.frequency_days} days.',
                status=WorkOrderStatus.OPEN,
                priority=Priority.MEDIUM,
                asset_id=asset.id,
                store_id=store_id if db.get(Store, store_id) else None,
                created_by_id=actor_user_id,
                due_date=schedule.next_due_date,
            )
        )
        created = True

    schedule.next_due_date = roll_forward(schedule.next_due_date, schedule.frequency_days, today)
    db.commit()
    return created


def generate_due_work_orders(db: Session, *, principal: Principal, today: date | None = None) -> RollerResult:
    """Create PM work orders for due schedules and roll their due dates forward.

    Each schedule is committed on its own. A schedule that fails is rolled back,
    logged and counted in ``failed``; the rest of the batch still runs.
    """
    today = today or date.today()
    stmt = (
        select(PreventiveSchedule.id)
        .where(PreventiveSchedule.active.is_(True), PreventiveSchedule.next_due_date <= today)
        .order_by(PreventiveSchedule.next_due_date.asc(), PreventiveSchedule.id.asc())
    )
    condition = scope_condition(PreventiveSchedule.store_id, principal)
    if condition is not None:
        stmt = stmt.where(condition)
    schedule_ids = db.execute(stmt).scalars().all()

    processed = 0
    generated = 0
    failed = 0
    for schedule_id in schedule_ids:
        try:
            created = _process_schedule(db, schedule_id=schedule_id, actor_user_id=principal.id, today=today)
        except (SQLAlchemyError, ValueError):
            db.rollback()
            logger.exception('PM roller failed on schedule %s', schedule_id)
            failed += 1
            continue
        processed += 1
        generated += int(created)

    logger.info(
        'PM roller processed %s schedule(s), generated %s work order(s), %s failed',
        processed,
        generated,
        failed,
    )
    return RollerResult(processed=processed, generated=generated, failed=failed)
