from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import (
    Principal,
    can_create_work_orders,
    can_see_all_stores,
    has_store_scope,
    is_admin_like,
    is_technician,
    is_vendor,
    resolve_target_store_id,
    scope_condition,
)
from cmms.config import settings
from cmms.models import Asset, Note, Priority, Store, Technician, User, Vendor, WorkOrder, WorkOrderStatus
from cmms.services.notification_service import notify_work_order_assigned, notify_work_order_updated
from cmms.services.sequence_service import WORK_ORDER_SCOPE, next_sequence_value
from cmms.services.serialization import model_to_dict
from cmms.services.store_service import get_store_by_qr_code


logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[WorkOrderStatus, set[WorkOrderStatus]] = {
    WorkOrderStatus.OPEN: {WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED},
    WorkOrderStatus.IN_PROGRESS: {WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED, WorkOrderStatus.OPEN},
    WorkOrderStatus.COMPLETED: {WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.OPEN},
    WorkOrderStatus.CANCELLED: {WorkOrderStatus.OPEN},
}

# Five-state vocabulary shown by the UI. Persistence is unchanged.
DISPLAY_STATUS = {
    WorkOrderStatus.OPEN: 'Pending',
    WorkOrderStatus.IN_PROGRESS: 'In Progress',
    WorkOrderStatus.PENDING_REVIEW: 'Pending Review',
    WorkOrderStatus.CANCELLED: 'On Hold',
    WorkOrderStatus.COMPLETED: 'Completed',
}

ACTIVE_STATUSES = (WorkOrderStatus.OPEN, WorkOrderStatus.IN_PROGRESS)
PRIORITIES = [priority.value for priority in Priority]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_status(value: str | WorkOrderStatus | None) -> WorkOrderStatus:
    if isinstance(value, WorkOrderStatus):
        return value
    clean_value = (value or '').strip().lower()
    for status in WorkOrderStatus:
        if status.value.lower() == clean_value:
            return status
    raise ValueError('Invalid status value')


def parse_priority(value: str | None, *, default: Priority | None = None) -> Priority:
    clean_value = (value or '').strip().lower()
    if not clean_value:
        if default is not None:
            return default
        raise ValueError('Priority is required.')
    for priority in Priority:
        if priority.value.lower() == clean_value:
            return priority
    raise ValueError(f'Invalid priority. Must be one of: {", ".join(PRIORITIES)}')


def is_transition_allowed(current: WorkOrderStatus, requested: WorkOrderStatus | None) -> bool:
    if requested is None or requested == current:
        return True
    return requested in ALLOWED_TRANSITIONS.get(current, set())


def validate_transition(current: str | WorkOrderStatus, requested: str | WorkOrderStatus | None) -> WorkOrderStatus:
    current_status = parse_status(current)
    if requested is None or requested == '':
        return current_status
    requested_status = parse_status(requested)
    if not is_transition_allowed(current_status, requested_status):
        raise ValueError(f'Invalid status transition from {current_status.value} to {requested_status.value}')
    return requested_status


def display_status(status: str | WorkOrderStatus) -> str:
    return DISPLAY_STATUS[parse_status(status)]


def serialize_work_order(
    work_order: WorkOrder,
    *,
    asset_name: str | None = None,
    store_name: str | None = None,
    assigned_to_name: str | None = None,
) -> dict:
    payload = model_to_dict(work_order, exclude={'share_token'})
    payload['display_status'] = display_status(work_order.status)
    payload['asset_name'] = asset_name
    payload['store_name'] = store_name
    payload['assigned_to_name'] = assigned_to_name
    payload['shared'] = work_order.share_token is not None
    return payload


def _detail_stmt():
    return (
        select(WorkOrder, Asset.name, Store.name, Technician.name)
        .outerjoin(Asset, Asset.id == WorkOrder.asset_id)
        .outerjoin(Store, Store.id == WorkOrder.store_id)
        .outerjoin(Technician, Technician.id == WorkOrder.assigned_to_id)
    )


def _visibility_condition(principal: Principal, requested_store_id: int | None = None):
    """WHERE clause for the work orders `principal` may see; None means unrestricted."""
    if is_technician(principal.role):
        technician_id = getattr(principal, 'technician_id', None)
        if technician_id is None:
            return WorkOrder.id.is_(None)
        return WorkOrder.assigned_to_id == technician_id
    if is_vendor(principal.role):
        vendor_id = getattr(principal, 'vendor_id', None)
        if vendor_id is None:
            return WorkOrder.id.is_(None)
        return WorkOrder.vendor_id == vendor_id
    return scope_condition(WorkOrder.store_id, principal, requested_store_id)


def can_view_work_order(principal: Principal, work_order: WorkOrder) -> bool:
    if is_technician(principal.role):
        technician_id = getattr(principal, 'technician_id', None)
        return technician_id is not None and work_order.assigned_to_id == technician_id
    if is_vendor(principal.role):
        vendor_id = getattr(principal, 'vendor_id', None)
        return vendor_id is not None and work_order.vendor_id == vendor_id
    return has_store_scope(principal, work_order.store_id)


def list_work_orders(
    db: Session,
    *,
    principal: Principal,
    store_id: int | None = None,
    status: str | None = None,
    asset_id: int | None = None,
) -> list[dict]:
    stmt = _detail_stmt().order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())
    condition = _visibility_condition(principal, store_id)
    if condition is not None:
        stmt = stmt.where(condition)
    if status:
        stmt = stmt.where(WorkOrder.status == parse_status(status))
    if asset_id is not None:
        stmt = stmt.where(WorkOrder.asset_id == asset_id)
    return [
        serialize_work_order(work_order, asset_name=asset_name, store_name=store_name, assigned_to_name=tech_name)
        for work_order, asset_name, store_name, tech_name in db.execute(stmt).all()
    ]


def get_work_order_for_principal(db: Session, *, principal: Principal, work_order_id: int) -> WorkOrder:
    work_order = db.get(WorkOrder, work_order_id)
    if not work_order:
        raise LookupError('Work order not found.')
    if not can_view_work_order(principal, work_order):
        raise PermissionError('Forbidden. You cannot access this work order.')
    return work_order


def get_work_order_detail(db: Session, *, principal: Principal, work_order_id: int) -> dict:
    get_work_order_for_principal(db, principal=principal, work_order_id=work_order_id)
    work_order, asset_name, store_name, tech_name = db.execute(
        _detail_stmt().where(WorkOrder.id == work_order_id)
    ).one()
    payload = serialize_work_order(work_order, asset_name=asset_name, store_name=store_name, assigned_to_name=tech_name)
    payload['notes'] = [
        model_to_dict(note)
        for note in db.execute(
            select(Note).where(Note.work_order_id == work_order_id).order_by(Note.created_at.asc(), Note.id.asc())
        ).scalars().all()
    ]
    return payload


def resolve_assignee(db: Session, value, *, store_id: int | None) -> Technician | None:
    """`None` or an empty string disconnects; anything else must name a technician of `store_id`."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        technician_id = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError('Assigned technician not found.') from exc
    technician = db.get(Technician, technician_id)
    if not technician:
        raise ValueError('Assigned technician not found.')
    if technician.store_id != store_id:
        raise ValueError('Assigned technician does not belong to this store.')
    return technician


def _resolve_vendor(db: Session, vendor_id: int | None, *, store_id: int | None) -> Vendor | None:
    if vendor_id is None:
        return None
    vendor = db.get(Vendor, vendor_id)
    if not vendor:
        raise ValueError('Vendor not found.')
    # Vendors without a store are shared across stores.
    if vendor.store_id is not None and vendor.store_id != store_id:
        raise ValueError('Vendor does not belong to this store.')
    return vendor


def notify_assignment(db: Session, work_order: WorkOrder, technician: Technician | None) -> None:
    if technician is None or not technician.email:
        return
    notify_work_order_assigned(db, work_order, technician_email=technician.email, technician_name=technician.name)


def _notify_creator(db: Session, work_order: WorkOrder, changes: list[str]) -> None:
    if not changes or work_order.created_by_id is None:
        return
    creator = db.get(User, work_order.created_by_id)
    if creator:
        notify_work_order_updated(db, work_order, recipient_email=creator.email, changes=changes)


def create_work_order(db: Session, *, principal: Principal, fields: dict) -> WorkOrder:
    if not can_create_work_orders(principal.role):
        raise PermissionError('Forbidden. You cannot create work orders.')

    title = (fields.get('title') or '').strip()
    if not title:
        raise ValueError('Title is required.')
    if fields.get('asset_id') is None:
        raise ValueError('Asset is required.')
    priority = parse_priority(fields.get('priority'))

    requested_store_id = fields.get('store_id') if can_see_all_stores(principal.role) else None
    store_id = resolve_target_store_id(principal, requested_store_id)
    if not db.get(Store, store_id):
        raise ValueError('Store not found.')

    asset = db.get(Asset, fields['asset_id'])
    if not asset:
        raise ValueError('Asset not found.')
    if asset.store_id != store_id:
        raise ValueError('Selected asset does not belong to the chosen store.')

    status = WorkOrderStatus.OPEN
    if fields.get('status'):
        status = parse_status(fields['status'])
        if status == WorkOrderStatus.PENDING_REVIEW:
            raise ValueError('Invalid status value')

    technician = resolve_assignee(db, fields.get('assigned_to_id'), store_id=store_id)
    vendor = _resolve_vendor(db, fields.get('vendor_id'), store_id=store_id)

    work_order = WorkOrder(
        work_order_number=next_sequence_value(db, WORK_ORDER_SCOPE),
        title=title,
        description=(fields.get('description') or '').strip() or None,
        problem_description=(fields.get('problem_description') or '').strip() or None,
        help_description=(fields.get('help_description') or '').strip() or None,
        status=status,
        priority=priority,
        asset_id=asset.id,
        store_id=store_id,
        assigned_to_id=technician.id if technician else None,
        vendor_id=vendor.id if vendor else None,
        created_by_id=principal.id,
        parts_required=bool(fields.get('parts_required')),
        attachments=list(fields.get('attachments') or []),
        due_date=fields.get('due_date'),
        completed_at=_now() if status == WorkOrderStatus.COMPLETED else None,
    )
    db.add(work_order)
    db.flush()
    notify_assignment(db, work_order, technician)
    return work_order


def _assert_can_modify(principal: Principal, work_order: WorkOrder, fields: dict) -> None:
    if is_admin_like(principal.role):
        if not has_store_scope(principal, work_order.store_id):
            raise PermissionError('Forbidden. You cannot access this work order.')
        return

    technician_id = getattr(principal, 'technician_id', None)
    vendor_id = getattr(principal, 'vendor_id', None)
    is_assignee = (
        (is_technician(principal.role) and technician_id is not None and work_order.assigned_to_id == technician_id)
        or (is_vendor(principal.role) and vendor_id is not None and work_order.vendor_id == vendor_id)
    )
    if not is_assignee:
        raise PermissionError('Forbidden. You cannot update this work order.')
    if set(fields) - {'status'}:
        raise PermissionError('Assigned technicians can only update the status.')


def update_work_order(db: Session, *, principal: Principal, work_order_id: int, fields: dict) -> WorkOrder:
    work_order = db.get(WorkOrder, work_order_id)
    if not work_order:
        raise LookupError('Work order not found.')
    _assert_can_modify(principal, work_order, fields)

    changes: list[str] = []
    if fields.get('status'):
        new_status = validate_transition(work_order.status, fields['status'])
        if new_status != work_order.status:
            changes.append(f'Status: {work_order.status.value} -> {new_status.value}')
            work_order.status = new_status

    if 'title' in fields:
        title = (fields['title'] or '').strip()
        if not title:
            raise ValueError('Title is required.')
        work_order.title = title
    if 'description' in fields:
        work_order.description = (fields['description'] or '').strip() or None
    if fields.get('priority'):
        work_order.priority = parse_priority(fields['priority'])
    if 'due_date' in fields:
        work_order.due_date = fields['due_date']
    if 'completed_at' in fields:
        work_order.completed_at = fields['completed_at']
    if fields.get('parts_required') is not None:
        work_order.parts_required = fields['parts_required']
    if 'vendor_id' in fields:
        vendor = _resolve_vendor(db, fields['vendor_id'], store_id=work_order.store_id)
        work_order.vendor_id = vendor.id if vendor else None

    newly_assigned = None
    if 'assigned_to_id' in fields:
        technician = resolve_assignee(db, fields['assigned_to_id'], store_id=work_order.store_id)
        new_assignee_id = technician.id if technician else None
        if new_assignee_id != work_order.assigned_to_id:
            work_order.assigned_to_id = new_assignee_id
            newly_assigned = technician
            changes.append(f'Assigned to: {technician.name}' if technician else 'Unassigned')

    db.flush()
    notify_assignment(db, work_order, newly_assigned)
    _notify_creator(db, work_order, changes)
    return work_order


def change_work_order_status(db: Session, *, principal: Principal, work_order_id: int, status: str | None) -> WorkOrder:
    """Status-only flow that also keeps `completed_at` in step with the status."""
    if not status:
        raise ValueError('Status is required.')
    work_order = db.get(WorkOrder, work_order_id)
    if not work_order:
        raise LookupError('Work order not found.')
    _assert_can_modify(principal, work_order, {'status': status})

    previous = work_order.status
    new_status = validate_transition(previous, status)
    if new_status == previous:
        return work_order

    work_order.status = new_status
    if new_status == WorkOrderStatus.COMPLETED:
        work_order.completed_at = _now()
    elif previous == WorkOrderStatus.COMPLETED:
        work_order.completed_at = None
    db.flush()
    _notify_creator(db, work_order, [f'Status: {previous.value} -> {new_status.value}'])
    return work_order


def delete_work_order(db: Session, *, principal: Principal, work_order_id: int) -> None:
    work_order = db.get(WorkOrder, work_order_id)
    if not work_order:
        raise LookupError('Work order not found.')
    if not has_store_scope(principal, work_order.store_id):
        raise PermissionError('Forbidden. You cannot access this work order.')
    db.delete(work_order)
    db.flush()


def create_public_work_order(db: Session, *, fields: dict) -> WorkOrder:
    store = get_store_by_qr_code(db, fields.get('qr_code'))

    title = (fields.get('title') or '').strip()
    problem = (fields.get('problem_description') or '').strip()
    help_text = (fields.get('help_description') or '').strip()
    if not title:
        raise ValueError('Title is required.')
    if not problem:
        raise ValueError('Problem description is required.')
    if not help_text:
        raise ValueError('Help description is required.')
    priority = parse_priority(fields.get('priority'))

    asset_id = fields.get('asset_id')
    if asset_id is not None:
        asset = db.get(Asset, asset_id)
        if not asset or asset.store_id != store.id:
            raise ValueError('Asset does not belong to this store.')

    work_order = WorkOrder(
        work_order_number=next_sequence_value(db, WORK_ORDER_SCOPE),
        title=title,
        description=problem,
        problem_description=problem,
        help_description=help_text,
        status=WorkOrderStatus.OPEN,
        priority=priority,
        asset_id=asset_id,
        store_id=store.id,
        parts_required=bool(fields.get('parts_required')),
        attachments=list(fields.get('attachments') or []),
    )
    db.add(work_order)
    db.flush()
    logger.info('Public work order #%s submitted for store %s', work_order.work_order_number, store.id)
    return work_order


def share_url(token: str) -> str:
    return f'{settings.base_url}/share/workorder/{token}'


def _shareable(db: Session, principal: Principal, work_order_id: int) -> WorkOrder:
    work_order = db.get(WorkOrder, work_order_id)
    if not work_order:
        raise LookupError('Work order not found.')
    if not has_store_scope(principal, work_order.store_id):
        raise PermissionError('Forbidden. You cannot access this work order.')
    return work_order


def get_share_link(db: Session, *, principal: Principal, work_order_id: int) -> dict:
    work_order = _shareable(db, principal, work_order_id)
    token = work_order.share_token
    return {'share_token': token, 'share_url': share_url(token) if token else None}


def create_share_link(db: Session, *, principal: Principal, work_order_id: int) -> dict:
    work_order = _shareable(db, principal, work_order_id)
    work_order.share_token = secrets.token_hex(16)
    db.flush()
    return {'share_token': work_order.share_token, 'share_url': share_url(work_order.share_token)}


def revoke_share_link(db: Session, *, principal: Principal, work_order_id: int) -> None:
    work_order = _shareable(db, principal, work_order_id)
    work_order.share_token = None
    db.flush()


def get_shared_work_order(db: Session, *, token: str) -> dict:
    row = None
    if token:
        row = db.execute(_detail_stmt().where(WorkOrder.share_token == token)).one_or_none()
    if not row:
        raise LookupError('Shared work order not found.')
    work_order, asset_name, store_name, tech_name = row
    notes = db.execute(
        select(Note).where(Note.work_order_id == work_order.id).order_by(Note.created_at.asc(), Note.id.asc())
    ).scalars().all()
    return {
        'work_order_number': work_order.work_order_number,
        'title': work_order.title,
        'description': work_order.description,
        'problem_description': work_order.problem_description,
        'status': work_order.status.value,
        'display_status': display_status(work_order.status),
        'priority': work_order.priority.value,
        'due_date': work_order.due_date,
        'completed_at': work_order.completed_at,
        'created_at': work_order.created_at,
        'asset_name': asset_name,
        'store_name': store_name,
        'assigned_to_name': tech_name,
        'attachments': list(work_order.attachments or []),
        'notes': [{'text': note.text, 'author': note.author, 'created_at': note.created_at} for note in notes],
    }
