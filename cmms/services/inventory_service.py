from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import Principal, can_see_all_stores, has_store_scope, resolve_target_store_id, scope_condition
from cmms.models import InventoryItem, Store
from cmms.services.parsing import parse_non_negative_int
from cmms.services.serialization import model_to_dict


def serialize_inventory_item(item: InventoryItem, *, store_name: str | None = None) -> dict:
    payload = model_to_dict(item)
    payload['store_name'] = store_name
    payload['low_stock'] = item.quantity_on_hand <= item.reorder_threshold
    return payload


def list_inventory(
    db: Session,
    *,
    principal: Principal,
    store_id: int | None = None,
    low_stock_only: bool = False,
) -> list[dict]:
    stmt = (
        select(InventoryItem, Store.name)
        .join(Store, Store.id == InventoryItem.store_id)
        .order_by(InventoryItem.name.asc(), InventoryItem.id.asc())
    )
    condition = scope_condition(InventoryItem.store_id, principal, store_id)
    if condition is not None:
        stmt = stmt.where(condition)
    if low_stock_only:
        stmt = stmt.where(InventoryItem.quantity_on_hand <= InventoryItem.reorder_threshold)
    return [serialize_inventory_item(item, store_name=store_name) for item, store_name in db.execute(stmt).all()]


def get_inventory_item_for_principal(db: Session, *, principal: Principal, item_id: int) -> InventoryItem:
    item = db.get(InventoryItem, item_id)
    if not item:
        raise LookupError('Inventory item not found.')
    if not has_store_scope(principal, item.store_id):
        raise PermissionError('Forbidden. You cannot access this inventory item.')
    return item


def create_inventory_item(db: Session, *, principal: Principal, fields: dict) -> InventoryItem:
    name = (fields.get('name') or '').strip()
    if not name:
        raise ValueError('Part name is required.')

    quantity = parse_non_negative_int(fields.get('quantity_on_hand'), field_label='Quantity on hand')
    threshold = parse_non_negative_int(fields.get('reorder_threshold'), field_label='Reorder threshold')

    requested_store_id = fields.get('store_id') if can_see_all_stores(principal.role) else None
    store_id = resolve_target_store_id(principal, requested_store_id)
    if not db.get(Store, store_id):
        raise ValueError('Store not found.')

    item = InventoryItem(
        name=name,
        part_number=(fields.get('part_number') or '').strip(),
        quantity_on_hand=quantity,
        reorder_threshold=threshold,
        location=(fields.get('location') or '').strip() or None,
        store_id=store_id,
    )
    db.add(item)
    db.flush()
    return item


def update_inventory_item(db: Session, *, principal: Principal, item_id: int, fields: dict) -> InventoryItem:
    item = get_inventory_item_for_principal(db, principal=principal, item_id=item_id)
    if 'name' in fields:
        name = (fields['name'] or '').strip()
        if not name:
            raise ValueError('Part name is required.')
        item.name = name
    if 'part_number' in fields:
        item.part_number = (fields['part_number'] or '').strip()
    if 'quantity_on_hand' in fields:
        item.quantity_on_hand = parse_non_negative_int(fields['quantity_on_hand'], field_label='Quantity on hand')
    if 'reorder_threshold' in fields:
        item.reorder_threshold = parse_non_negative_int(fields['reorder_threshold'], field_label='Reorder threshold')
    if 'location' in fields:
        item.location = (fields['location'] or '').strip() or None
    db.flush()
    return item


def delete_inventory_item(db: Session, *, principal: Principal, item_id: int) -> None:
    item = get_inventory_item_for_principal(db, principal=principal, item_id=item_id)
    db.delete(item)
    db.flush()
