from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import Principal, can_see_all_stores, has_store_scope, resolve_target_store_id, scope_condition
from cmms.models import Asset, AssetStatus, Store
from cmms.services.sequence_service import asset_scope, next_sequence_value
from cmms.services.serialization import model_to_dict


ASSET_STATUSES = [status.value for status in AssetStatus]


def parse_asset_status(value: str | None) -> AssetStatus:
    if value is None or not str(value).strip():
        return AssetStatus.ACTIVE
    clean_value = str(value).strip().lower()
    for status in AssetStatus:
        if status.value.lower() == clean_value:
            return status
    raise ValueError(f'Invalid status. Must be one of: {", ".join(ASSET_STATUSES)}')


def serialize_asset(asset: Asset, *, store_name: str | None = None, parent_name: str | None = None) -> dict:
    payload = model_to_dict(asset)
    payload['store_name'] = store_name
    payload['parent_asset_name'] = parent_name
    return payload


def list_assets(
    db: Session,
    *,
    principal: Principal,
    store_id: int | None = None,
    status: str | None = None,
) -> list[dict]:
    parent = select(Asset.id, Asset.name).subquery()
    stmt = (
        select(Asset, Store.name, parent.c.name)
        .join(Store, Store.id == Asset.store_id)
        .outerjoin(parent, parent.c.id == Asset.parent_asset_id)
        .order_by(Asset.store_id.asc(), Asset.asset_number.asc(), Asset.id.asc())
    )
    condition = scope_condition(Asset.store_id, principal, store_id)
    if condition is not None:
        stmt = stmt.where(condition)
    if status:
        stmt = stmt.where(Asset.status == parse_asset_status(status))
    return [
        serialize_asset(asset, store_name=store_name, parent_name=parent_name)
        for asset, store_name, parent_name in db.execute(stmt).all()
    ]


def get_asset_for_principal(db: Session, *, principal: Principal, asset_id: int) -> Asset:
    asset = db.get(Asset, asset_id)
    if not asset:
        raise LookupError('Asset not found.')
    if not has_store_scope(principal, asset.store_id):
        raise PermissionError('Forbidden. You cannot access this asset.')
    return asset


def _validate_parent(db: Session, parent_asset_id: int | None, store_id: int, *, asset_id: int | None = None) -> None:
    if parent_asset_id is None:
        return
    if asset_id is not None and parent_asset_id == asset_id:
        raise ValueError('An asset cannot be its own parent.')
    parent = db.get(Asset, parent_asset_id)
    if not parent:
        raise ValueError('Parent asset not found.')
    if parent.store_id != store_id:
        raise ValueError('Parent asset does not belong to this store.')


def create_asset(db: Session, *, principal: Principal, fields: dict) -> Asset:
    name = (fields.get('name') or '').strip()
    if not name:
        raise ValueError('Asset name is required.')

    requested_store_id = fields.get('store_id') if can_see_all_stores(principal.role) else None
    store_id = resolve_target_store_id(principal, requested_store_id)
    if not db.get(Store, store_id):
        raise ValueError('Store not found.')

    status = parse_asset_status(fields.get('status'))
    _validate_parent(db, fields.get('parent_asset_id'), store_id)

    asset = Asset(
        asset_number=next_sequence_value(db, asset_scope(store_id)),
        name=name,
        location=(fields.get('location') or '').strip(),
        status=status,
        make=(fields.get('make') or '').strip() or None,
        model=(fields.get('model') or '').strip() or None,
        category=(fields.get('category') or '').strip() or None,
        store_id=store_id,
        parent_asset_id=fields.get('parent_asset_id'),
    )
    db.add(asset)
    db.flush()
    return asset


def update_asset(db: Session, *, principal: Principal, asset_id: int, fields: dict) -> Asset:
    asset = get_asset_for_principal(db, principal=principal, asset_id=asset_id)
    if 'name' in fields:
        name = (fields['name'] or '').strip()
        if not name:
            raise ValueError('Asset name is required.')
        asset.name = name
    if 'status' in fields:
        asset.status = parse_asset_status(fields['status'])
    if 'parent_asset_id' in fields:
        _validate_parent(db, fields['parent_asset_id'], asset.store_id, asset_id=asset.id)
        asset.parent_asset_id = fields['parent_asset_id']
    if 'location' in fields:
        asset.location = (fields['location'] or '').strip()
    for key in ('make', 'model', 'category'):
        if key in fields:
            setattr(asset, key, (fields[key] or '').strip() or None)
    db.flush()
    return asset


def delete_asset(db: Session, *, principal: Principal, asset_id: int) -> None:
    asset = get_asset_for_principal(db, principal=principal, asset_id=asset_id)
    db.delete(asset)
    db.flush()
