from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import (
    Principal,
    Role,
    can_create_requests,
    has_store_scope,
    is_admin_like,
    is_user,
    is_vendor,
    scope_condition,
)
from cmms.models import Asset, MaintenanceRequest, Priority, RequestStatus, Store, User, WorkOrder, WorkOrderStatus
from cmms.services.notification_service import notify_request_submitted
from cmms.services.sequence_service import REQUEST_SCOPE, WORK_ORDER_SCOPE, next_sequence_value
from cmms.services.serialization import model_to_dict
from cmms.services.workorder_service import notify_assignment, resolve_assignee, parse_priority


def serialize_request(request_row: MaintenanceRequest, *, asset_name: str | None = None, store_name: str | None = None) -> dict:
    payload = model_to_dict(request_row)
    payload['asset_name'] = asset_name
    payload['store_name'] = store_name
    return payload


def _sees_only_own(principal: Principal) -> bool:
    return is_user(principal.role) or is_vendor(principal.role)


def list_requests(
    db: Session,
    *,
    principal: Principal,
    store_id: int | None = None,
    status: str | None = None,
) -> list[dict]:
    stmt = (
        select(MaintenanceRequest, Asset.name, Store.name)
        .outerjoin(Asset, Asset.id == MaintenanceRequest.asset_id)
        .outerjoin(Store, Store.id == MaintenanceRequest.store_id)
        .order_by(MaintenanceRequest.created_at.desc(), MaintenanceRequest.id.desc())
    )
    if _sees_only_own(principal):
        stmt = stmt.where(MaintenanceRequest.created_by == principal.email)
    else:
        condition = scope_condition(MaintenanceRequest.store_id, principal, store_id)
        if condition is not None:
            stmt = stmt.where(condition)
    if status:
        stmt = stmt.where(MaintenanceRequest.status == _parse_request_status(status))
    return [
        serialize_request(request_row, asset_name=asset_name, store_name=store_name)
        for request_row, asset_name, store_name in db.execute(stmt).all()
    ]


def _parse_request_status(value: str) -> RequestStatus:
    clean_value = value.strip().lower()
    for status in RequestStatus:
        if status.value.lower() == clean_value:
            return status
    raise ValueError('Invalid status value')


def get_request_for_principal(db: Session, *, principal: Principal, request_id: int) -> MaintenanceRequest:
    request_row = db.get(MaintenanceRequest, request_id)
    if not request_row:
        raise LookupError('Request not found.')
    if _sees_only_own(principal):
        allowed = request_row.created_by == principal.email
    else:
        allowed = has_store_scope(principal, request_row.store_id)
    if not allowed:
        raise PermissionError('Forbidden. You cannot access this request.')
    return request_row


def _check_asset(db: Session, asset_id: int | None, store_id: int | None) -> None:
    if asset_id is None:
        return
    asset = db.get(Asset, asset_id)
    if not asset:
        raise ValueError('Asset not found.')
    if store_id is not None and asset.store_id != store_id:
        raise ValueError('Asset does not belong to this store.')


def _request_store_id(principal: Principal, body_store_id: int | None) -> int:
    if is_admin_like(principal.role):
        store_id = body_store_id if body_store_id is not None else principal.store_id
        if store_id is None:
            raise ValueError('store_id is required for master admins.')
        if not has_store_scope(principal, store_id):
            raise PermissionError('Forbidden. You cannot access this store.')
        return store_id
    if principal.store_id is None:
        raise ValueError('User has no store assigned.')
    return principal.store_id


def _store_admin_emails(db: Session, store_id: int) -> list[str]:
    return db.execute(
        select(User.email).where(
            User.store_id == store_id,
            User.role.in_([Role.STORE_ADMIN, Role.ADMIN]),
            User.active.is_(True),
        )
    ).scalars().all()


def create_request(db: Session, *, principal: Principal, fields: dict) -> MaintenanceRequest:
    if not can_create_requests(principal.role):
        raise PermissionError('Forbidden. You cannot create requests.')

    title = (fields.get('title') or '').strip()
    description = (fields.get('description') or '').strip()
    if not title or not description:
        raise ValueError('Title and description are required.')

    store_id = _request_store_id(principal, fields.get('store_id'))
    store = db.get(Store, store_id)
    if not store:
        raise ValueError('Store not found.')
    _check_asset(db, fields.get('asset_id'), store_id)

    request_row = MaintenanceRequest(
        request_number=next_sequence_value(db, REQUEST_SCOPE),
        title=title,
        description=description,
        asset_id=fields.get('asset_id'),
        priority=parse_priority(fields.get('priority'), default=Priority.MEDIUM),
        status=RequestStatus.OPEN,
        store_id=store_id,
        created_by=principal.email,
        attachments=list(fields.get('attachments') or []),
    )
    db.add(request_row)
    db.flush()

    recipients = [email for email in _store_admin_emails(db, store_id) if email != principal.email]
    notify_request_submitted(db, request_row, recipient_emails=recipients, store_name=store.name)
    return request_row


def update_request(db: Session, *, principal: Principal, request_id: int, fields: dict) -> MaintenanceRequest:
    if not is_admin_like(principal.role):
        raise PermissionError('Forbidden. Only admins can edit requests.')
    request_row = get_request_for_principal(db, principal=principal, request_id=request_id)
    if request_row.status == RequestStatus.CONVERTED:
        raise ValueError('Converted requests cannot be edited.')
    title = (fields.get('title') or '').strip()
    description = (fields.get('description') or '').strip()
    if not title or not description or fields.get('asset_id') is None:
        raise ValueError('Title, description and asset are required.')
    _check_asset(db, fields['asset_id'], request_row.store_id)

    request_row.title = title
    request_row.description = description
    request_row.asset_id = fields['asset_id']
    if fields.get('priority'):
        request_row.priority = parse_priority(fields['priority'])
    db.flush()
    return request_row


def _set_decision(db: Session, *, principal: Principal, request_id: int, status: RequestStatus) -> MaintenanceRequest:
    request_row = get_request_for_principal(db, principal=principal, request_id=request_id)
    if request_row.status == RequestStatus.CONVERTED:
        raise ValueError('Request has already been converted to a work order.')
    request_row.status = status
    db.flush()
    return request_row


def approve_request(db: Session, *, principal: Principal, request_id: int) -> MaintenanceRequest:
    return _set_decision(db, principal=principal, request_id=request_id, status=RequestStatus.APPROVED)


def reject_request(db: Session, *, principal: Principal, request_id: int) -> MaintenanceRequest:
    return _set_decision(db, principal=principal, request_id=request_id, status=RequestStatus.REJECTED)


def convert_request(db: Session, *, principal: Principal, request_id: int, fields: dict) -> WorkOrder:
    request_row = get_request_for_principal(db, principal=principal, request_id=request_id)
    if request_row.status == RequestStatus.CONVERTED:
        raise ValueError('Request has already been converted to a work order.')
    if request_row.status == RequestStatus.REJECTED:
        raise ValueError('Rejected requests cannot be converted.')

    asset_id = fields.get('asset_id') or request_row.asset_id
    if asset_id is None:
        raise ValueError('An asset is required to convert a request.')
    _check_asset(db, asset_id, request_row.store_id)
    technician = resolve_assignee(db, fields.get('assigned_to_id'), store_id=request_row.store_id)

    work_order = WorkOrder(
        work_order_number=next_sequence_value(db, WORK_ORDER_SCOPE),
        title=f'Request: {request_row.title}',
        description=request_row.description,
        status=WorkOrderStatus.OPEN,
        priority=request_row.priority,
        asset_id=asset_id,
        store_id=request_row.store_id,
        assigned_to_id=technician.id if technician else None,
        created_by_id=principal.id,
        attachments=list(request_row.attachments or []),
        due_date=fields.get('due_date'),
    )
    db.add(work_order)
    db.flush()

    request_row.asset_id = asset_id
    request_row.status = RequestStatus.CONVERTED
    request_row.work_order_id = work_order.id
    db.flush()
    notify_assignment(db, work_order, technician)
    return work_order
