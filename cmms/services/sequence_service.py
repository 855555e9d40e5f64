"""Monotonic, never-reused numbering for human-facing record numbers."""
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cmms.models import Asset, MaintenanceRequest, PurchaseOrder, SequenceCounter, WorkOrder


WORK_ORDER_SCOPE = 'work_order'
REQUEST_SCOPE = 'request'


def asset_scope(store_id: int) -> str:
    return f'asset:{store_id}'


def purchase_order_scope(store_id: int) -> str:
    return f'po:{store_id}'


def _current_max(db: Session, scope: str) -> int:
    kind, _, store_part = scope.partition(':')
    if kind == 'asset':
        stmt = select(func.max(Asset.asset_number)).where(Asset.store_id == int(store_part))
    elif kind == 'po':
        stmt = select(func.max(PurchaseOrder.po_number)).where(PurchaseOrder.store_id == int(store_part))
    elif scope == WORK_ORDER_SCOPE:
        stmt = select(func.max(WorkOrder.work_order_number))
    elif scope == REQUEST_SCOPE:
        stmt = select(func.max(MaintenanceRequest.request_number))
    else:
        raise ValueError(f'Unknown sequence scope: {scope}')
    return db.execute(stmt).scalar() or 0


def _locked_counter(db: Session, scope: str) -> SequenceCounter:
    counter = db.execute(
        select(SequenceCounter).where(SequenceCounter.scope == scope).with_for_update()
    ).scalar_one_or_none()
    if counter is None:
        # First use seeds from existing rows so numbering continues after a migration.
        counter = SequenceCounter(scope=scope, value=_current_max(db, scope))
        db.add(counter)
        db.flush()
    return counter


def next_sequence_value(db: Session, scope: str) -> int:
    counter = _locked_counter(db, scope)
    counter.value += 1
    db.flush()
    return counter.value


def bump_sequence(db: Session, scope: str, at_least: int) -> None:
    """Keep the counter at or above an explicitly supplied number."""
    counter = _locked_counter(db, scope)
    if counter.value < at_least:
        counter.value = at_least
        db.flush()
