from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cmms.config import settings
from cmms.models import (
    Asset,
    AssetStatus,
    InventoryItem,
    MaintenanceRequest,
    PreventiveSchedule,
    Technician,
    WorkOrder,
    WorkOrderStatus,
)
from cmms.services.store_service import get_store


logger = logging.getLogger(__name__)

DEFAULT_REPORT_DAYS = 30
REPORT_NAME = re.compile(r'^report-\d{8}T\d{12}\.json$')


def report_root() -> Path:
    return Path(settings.report_dir).resolve()


def report_url(store_id: int, name: str) -> str:
    return f'/reports/{store_id}/{name}'


def _count(db: Session, model, *conditions) -> int:
    return db.execute(select(func.count()).select_from(model).where(*conditions)).scalar_one()


def build_store_report(db: Session, *, store_id: int, start_date: date | None, end_date: date | None) -> dict:
    store = get_store(db, store_id)
    end_date = end_date or date.today()
    start_date = start_date or end_date - timedelta(days=DEFAULT_REPORT_DAYS)
    if start_date > end_date:
        raise ValueError('start_date must be on or before end_date.')

    start_at = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end_at = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    in_window = (WorkOrder.store_id == store.id, WorkOrder.created_at >= start_at, WorkOrder.created_at < end_at)

    by_status = {
        status.value: _count(db, WorkOrder, *in_window, WorkOrder.status == status) for status in WorkOrderStatus
    }
    overdue = _count(
        db,
        WorkOrder,
        WorkOrder.store_id == store.id,
        WorkOrder.status.in_([WorkOrderStatus.OPEN, WorkOrderStatus.IN_PROGRESS]),
        WorkOrder.due_date < date.today(),
    )
    return {
        'store': {'id': store.id, 'name': store.name, 'code': store.code},
        'period': {'start_date': start_date.isoformat(), 'end_date': end_date.isoformat()},
        'generated_at': datetime.now(tz=timezone.utc).isoformat(),
        'work_orders': {
            'created': sum(by_status.values()),
            'by_status': by_status,
            'overdue_open': overdue,
        },
        'assets': {
            'total': _count(db, Asset, Asset.store_id == store.id),
            'down': _count(db, Asset, Asset.store_id == store.id, Asset.status == AssetStatus.DOWN),
        },
        'preventive_schedules': {
            'active': _count(db, PreventiveSchedule, PreventiveSchedule.store_id == store.id, PreventiveSchedule.active.is_(True)),
        },
        'requests': {
            'created': _count(
                db,
                MaintenanceRequest,
                MaintenanceRequest.store_id == store.id,
                MaintenanceRequest.created_at >= start_at,
                MaintenanceRequest.created_at < end_at,
            ),
        },
        'inventory': {
            'items': _count(db, InventoryItem, InventoryItem.store_id == store.id),
            'low_stock': _count(
                db,
                InventoryItem,
                InventoryItem.store_id == store.id,
                InventoryItem.quantity_on_hand <= InventoryItem.reorder_threshold,
            ),
        },
        'technicians': _count(db, Technician, Technician.store_id == store.id),
    }


def write_store_report(report: dict) -> dict:
    store_id = report['store']['id']
    name = f'report-{datetime.now(tz=timezone.utc).strftime("%Y%m%dT%H%M%S%f")}.json'
    target = report_root() / str(store_id) / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(report, indent=2), encoding='utf-8')
    logger.info('Wrote store report %s/%s', store_id, name)
    return {'store_id': store_id, 'name': name, 'url': report_url(store_id, name)}


def list_store_reports(*, store_id: int | None = None) -> list[dict]:
    base = report_root()
    if not base.exists():
        return []
    pattern = f'{store_id}/report-*.json' if store_id is not None else '*/report-*.json'
    reports = []
    for path in sorted(base.glob(pattern), key=lambda item: item.name, reverse=True):
        if not path.parent.name.isdigit() or not REPORT_NAME.match(path.name):
            continue
        report_store_id = int(path.parent.name)
        reports.append(
            {
                'store_id': report_store_id,
                'name': path.name,
                'url': report_url(report_store_id, path.name),
                'size': path.stat().st_size,
            }
        )
    return reports


def store_report_path(*, store_id: int, name: str) -> Path:
    if not REPORT_NAME.match(name):
        raise LookupError('Report not found.')
    path = report_root() / str(store_id) / name
    if not path.is_file():
        raise LookupError('Report not found.')
    return path
