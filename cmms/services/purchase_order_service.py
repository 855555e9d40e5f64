from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import Principal, has_store_scope, resolve_target_store_id
from cmms.models import InventoryItem, PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus, Store, Vendor
from cmms.services.purchase_order_math_service import compute_order_totals, validate_line
from cmms.services.sequence_service import next_sequence_value, purchase_order_scope
from cmms.services.serialization import model_to_dict


PO_STATUSES = [status.value for status in PurchaseOrderStatus]
CLOSED_STATUSES = {PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_po_status(value: str | None, *, default: PurchaseOrderStatus | None = None) -> PurchaseOrderStatus:
    clean_value = (value or '').strip().lower()
    if not clean_value and default is not None:
        return default
    for status in PurchaseOrderStatus:
        if status.value.lower() == clean_value:
            return status
    raise ValueError(f'Invalid status. Must be one of: {", ".join(PO_STATUSES)}')


def _assert_store_access(principal: Principal, store_id: int) -> None:
    if not has_store_scope(principal, store_id):
        raise PermissionError('Forbidden. You cannot access this store.')


def serialize_purchase_order(po: PurchaseOrder, items: list[PurchaseOrderItem], *, vendor_name: str | None = None) -> dict:
    payload = model_to_dict(po)
    payload['vendor_name'] = vendor_name
    payload['items'] = [model_to_dict(item) for item in items]
    return payload


def _items_by_order(db: Session, order_ids: list[int]) -> dict[int, list[PurchaseOrderItem]]:
    if not order_ids:
        return {}
    grouped: dict[int, list[PurchaseOrderItem]] = {}
    for item in db.execute(
        select(PurchaseOrderItem)
        .where(PurchaseOrderItem.purchase_order_id.in_(order_ids))
        .order_by(PurchaseOrderItem.id.asc())
    ).scalars().all():
        grouped.setdefault(item.purchase_order_id, []).append(item)
    return grouped


def list_purchase_orders(db: Session, *, principal: Principal, store_id: int | None) -> list[dict]:
    if store_id is None:
        raise ValueError('store_id is required.')
    _assert_store_access(principal, store_id)

    rows = db.execute(
        select(PurchaseOrder, Vendor.name)
        .outerjoin(Vendor, Vendor.id == PurchaseOrder.vendor_id)
        .where(PurchaseOrder.store_id == store_id)
        .order_by(PurchaseOrder.po_number.desc())
    ).all()
    items = _items_by_order(db, [po.id for po, _ in rows])
    return [serialize_purchase_order(po, items.get(po.id, []), vendor_name=vendor_name) for po, vendor_name in rows]


def get_purchase_order(db: Session, *, principal: Principal, purchase_order_id: int) -> PurchaseOrder:
    po = db.get(PurchaseOrder, purchase_order_id)
    if po is None:
        raise LookupError('Purchase order not found.')
    _assert_store_access(principal, po.store_id)
    return po


def purchase_order_detail(db: Session, po: PurchaseOrder) -> dict:
    vendor = db.get(Vendor, po.vendor_id) if po.vendor_id else None
    return serialize_purchase_order(po, _items_by_order(db, [po.id]).get(po.id, []), vendor_name=vendor.name if vendor else None)


def create_purchase_order(db: Session, *, principal: Principal, fields: dict) -> PurchaseOrder:
    name = (fields.get('name') or '').strip()
    if not name:
        raise ValueError('Purchase order name is required.')
    status = parse_po_status(fields.get('status'), default=PurchaseOrderStatus.DRAFT)

    store_id = resolve_target_store_id(principal, fields.get('store_id'))
    if not db.get(Store, store_id):
        raise LookupError('Store not found.')

    vendor_id = fields.get('vendor_id')
    if vendor_id is not None:
        vendor = db.get(Vendor, vendor_id)
        if vendor is None:
            raise ValueError('Vendor not found.')
        if vendor.store_id is not None and vendor.store_id != store_id:
            raise ValueError('Vendor does not belong to this store.')

    raw_items = fields.get('items') or []
    if not raw_items:
        raise ValueError('At least one item is required.')
    lines = [validate_line(raw, position=index) for index, raw in enumerate(raw_items, start=1)]
    for index, line in enumerate(lines, start=1):
        if line.inventory_item_id is None:
            continue
        item = db.get(InventoryItem, line.inventory_item_id)
        if item is None or item.store_id != store_id:
            raise ValueError(f'Item {index}: inventory item not found in this store')

    totals = compute_order_totals(lines)
    po = PurchaseOrder(
        po_number=next_sequence_value(db, purchase_order_scope(store_id)),
        name=name,
        status=status,
        store_id=store_id,
        vendor_id=vendor_id,
        order_date=fields.get('order_date') or date.today(),
        expected_date=fields.get('expected_date'),
        notes=(fields.get('notes') or '').strip() or None,
        subtotal=totals.subtotal,
        tax=totals.tax,
        total=totals.total,
        created_by_id=principal.id,
    )
    db.add(po)
    db.flush()
    for line in totals.lines:
        db.add(
            PurchaseOrderItem(
                purchase_order_id=po.id,
                inventory_item_id=line.inventory_item_id,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
            )
        )
    db.flush()
    return po


def set_purchase_order_status(db: Session, *, principal: Principal, purchase_order_id: int, status: str | None) -> PurchaseOrder:
    po = get_purchase_order(db, principal=principal, purchase_order_id=purchase_order_id)
    new_status = parse_po_status(status)
    if new_status == po.status:
        return po
    if po.status in CLOSED_STATUSES:
        raise ValueError(f'{po.status.value} orders cannot be changed')
    if new_status == PurchaseOrderStatus.RECEIVED:
        raise ValueError('Use the receive action to mark an order as received')
    po.status = new_status
    db.flush()
    return po


def receive_purchase_order(db: Session, *, principal: Principal, purchase_order_id: int) -> PurchaseOrder:
    po = get_purchase_order(db, principal=principal, purchase_order_id=purchase_order_id)
    if po.status in CLOSED_STATUSES:
        raise ValueError(f'{po.status.value} orders cannot be received')

    items = db.execute(
        select(PurchaseOrderItem).where(PurchaseOrderItem.purchase_order_id == po.id)
    ).scalars().all()
    for item in items:
        if item.inventory_item_id is None:
            continue
        inventory_item = db.execute(
            select(InventoryItem).where(InventoryItem.id == item.inventory_item_id).with_for_update()
        ).scalar_one_or_none()
        if inventory_item is not None:
            inventory_item.quantity_on_hand += item.quantity

    po.status = PurchaseOrderStatus.RECEIVED
    po.received_at = _now()
    db.flush()
    return po
