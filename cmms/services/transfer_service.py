from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from cmms.auth import Principal, has_store_scope, scope_condition
from cmms.models import Asset, InventoryItem, PreventiveSchedule, Store, Transfer, TransferType, WorkOrder
from cmms.services.sequence_service import asset_scope, next_sequence_value
from cmms.services.serialization import model_to_dict


def parse_transfer_type(value: str | None) -> TransferType:
    clean_value = (value or '').strip().upper()
    try:
        return TransferType(clean_value)
    except ValueError as exc:
        raise ValueError('Transfer type must be ASSET or INVENTORY.') from exc


def list_transfers(
    db: Session,
    *,
    principal: Principal,
    work_order_id: int | None = None,
    asset_id: int | None = None,
    inventory_item_id: int | None = None,
    store_id: int | None = None,
) -> list[dict]:
    stmt = select(Transfer).order_by(Transfer.created_at.desc(), Transfer.id.desc())
    if work_order_id is not None:
        stmt = stmt.where(Transfer.work_order_id == work_order_id)
    if asset_id is not None:
        stmt = stmt.where(Transfer.asset_id == asset_id)
    if inventory_item_id is not None:
        stmt = stmt.where(Transfer.inventory_item_id == inventory_item_id)
    if store_id is not None:
        stmt = stmt.where(or_(Transfer.from_store_id == store_id, Transfer.to_store_id == store_id))

    from_scope = scope_condition(Transfer.from_store_id, principal)
    if from_scope is not None:
        stmt = stmt.where(or_(from_scope, scope_condition(Transfer.to_store_id, principal)))

    transfers = db.execute(stmt).scalars().all()
    store_ids = {t.from_store_id for t in transfers} | {t.to_store_id for t in transfers}
    store_names = dict(db.execute(select(Store.id, Store.name).where(Store.id.in_(store_ids))).all()) if store_ids else {}

    rows = []
    for transfer in transfers:
        payload = model_to_dict(transfer)
        payload['from_store_name'] = store_names.get(transfer.from_store_id)
        payload['to_store_name'] = store_names.get(transfer.to_store_id)
        rows.append(payload)
    return rows


def _destination_item(db: Session, source: InventoryItem, to_store_id: int) -> InventoryItem:
    match = InventoryItem.part_number == source.part_number if source.part_number else InventoryItem.name == source.name
    destination = db.execute(
        select(InventoryItem).where(InventoryItem.store_id == to_store_id, match).order_by(InventoryItem.id.asc())
    ).scalars().first()
    if destination is None:
        destination = InventoryItem(
            name=source.name,
            part_number=source.part_number,
            quantity_on_hand=0,
            reorder_threshold=source.reorder_threshold,
            location=None,
            store_id=to_store_id,
        )
        db.add(destination)
        db.flush()
    return destination


def create_transfer(db: Session, *, principal: Principal, fields: dict) -> Transfer:
    transfer_type = parse_transfer_type(fields.get('type'))
    from_store_id = fields.get('from_store_id')
    to_store_id = fields.get('to_store_id')
    if from_store_id is None or to_store_id is None:
        raise ValueError('From store and to store are required.')
    if from_store_id == to_store_id:
        raise ValueError('From store and to store must be different.')

    if transfer_type == TransferType.ASSET and fields.get('asset_id') is None:
        raise ValueError('asset_id is required for asset transfers.')
    quantity = fields.get('quantity')
    if transfer_type == TransferType.INVENTORY:
        if fields.get('inventory_item_id') is None:
            raise ValueError('inventory_item_id is required for inventory transfers.')
        if quantity is None or quantity <= 0:
            raise ValueError('Quantity must be greater than 0.')

    if not db.get(Store, from_store_id):
        raise LookupError('From store not found.')
    if not db.get(Store, to_store_id):
        raise LookupError('To store not found.')
    if not has_store_scope(principal, from_store_id):
        raise PermissionError('Forbidden. You can only transfer out of your own store.')

    work_order_id = fields.get('work_order_id')
    if work_order_id is not None and not db.get(WorkOrder, work_order_id):
        raise LookupError('Work order not found.')

    transfer = Transfer(
        type=transfer_type,
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        work_order_id=work_order_id,
        transferred_by_id=principal.id,
        notes=(fields.get('notes') or '').strip() or None,
    )

    if transfer_type == TransferType.ASSET:
        asset = db.get(Asset, fields['asset_id'])
        if not asset:
            raise LookupError('Asset not found.')
        if asset.store_id != from_store_id:
            raise ValueError('Asset does not belong to the source store.')
        # Asset numbers are per store; the moved asset takes the destination's next one.
        new_number = next_sequence_value(db, asset_scope(to_store_id))
        asset.store_id = to_store_id
        asset.asset_number = new_number
        asset.parent_asset_id = None
        schedules = db.execute(select(PreventiveSchedule).where(PreventiveSchedule.asset_id == asset.id)).scalars().all()
        for schedule in schedules:
            schedule.store_id = to_store_id
        transfer.asset_id = asset.id
        transfer.quantity = 1
    else:
        source = db.execute(
            select(InventoryItem).where(InventoryItem.id == fields['inventory_item_id']).with_for_update()
        ).scalar_one_or_none()
        if not source:
            raise LookupError('Inventory item not found.')
        if source.store_id != from_store_id:
            raise ValueError('Inventory item does not belong to the source store.')
        if source.quantity_on_hand < quantity:
            raise ValueError(f'Insufficient quantity. Available: {source.quantity_on_hand}, Requested: {quantity}')
        destination = _destination_item(db, source, to_store_id)
        source.quantity_on_hand -= quantity
        destination.quantity_on_hand += quantity
        transfer.inventory_item_id = source.id
        transfer.quantity = quantity

    db.add(transfer)
    db.flush()
    return transfer
