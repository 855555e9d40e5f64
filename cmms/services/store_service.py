from __future__ import annotations

import io
import secrets

import segno
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from cmms.auth import Principal, has_store_scope
from cmms.config import settings
from cmms.models import (
    Asset,
    AssetStatus,
    District,
    Division,
    InventoryItem,
    Store,
    StoreCategory,
    StoreCategoryLink,
    Technician,
    WorkOrder,
    WorkOrderStatus,
)
from cmms.services.serialization import model_to_dict


STORE_FIELDS = ('name', 'code', 'address', 'city', 'state', 'zip_code', 'timezone', 'district_id')


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def get_store(db: Session, store_id: int) -> Store:
    store = db.get(Store, store_id)
    if not store:
        raise LookupError('Store not found.')
    return store


def _categories_by_store(db: Session, store_ids: list[int]) -> dict[int, list[dict]]:
    if not store_ids:
        return {}
    rows = db.execute(
        select(StoreCategoryLink.store_id, StoreCategory)
        .join(StoreCategory, StoreCategory.id == StoreCategoryLink.category_id)
        .where(StoreCategoryLink.store_id.in_(store_ids))
        .order_by(StoreCategory.name.asc())
    ).all()
    grouped: dict[int, list[dict]] = {}
    for store_id, category in rows:
        grouped.setdefault(store_id, []).append({'id': category.id, 'name': category.name, 'color': category.color})
    return grouped


def serialize_store(store: Store, categories: list[dict] | None = None) -> dict:
    payload = model_to_dict(store)
    payload['categories'] = categories or []
    return payload


def list_stores(db: Session, *, store_id: int | None = None) -> list[dict]:
    stmt = select(Store).order_by(Store.name.asc())
    if store_id is not None:
        stmt = stmt.where(Store.id == store_id)
    stores = db.execute(stmt).scalars().all()
    categories = _categories_by_store(db, [store.id for store in stores])
    return [serialize_store(store, categories.get(store.id)) for store in stores]


def _assert_code_free(db: Session, code: str | None, *, exclude_store_id: int | None = None) -> None:
    if not code:
        return
    stmt = select(Store.id).where(Store.code == code)
    if exclude_store_id is not None:
        stmt = stmt.where(Store.id != exclude_store_id)
    if db.execute(stmt).first():
        raise ValueError('Code is already in use.')


def _set_categories(db: Session, store_id: int, category_ids: list[int]) -> None:
    unique_ids = sorted(set(category_ids))
    if unique_ids:
        found = set(db.execute(select(StoreCategory.id).where(StoreCategory.id.in_(unique_ids))).scalars().all())
        missing = [category_id for category_id in unique_ids if category_id not in found]
        if missing:
            raise ValueError(f'Unknown store category: {missing[0]}')
    db.execute(delete(StoreCategoryLink).where(StoreCategoryLink.store_id == store_id))
    for category_id in unique_ids:
        db.add(StoreCategoryLink(store_id=store_id, category_id=category_id))


def _check_district(db: Session, district_id: int | None) -> None:
    if district_id is not None and not db.get(District, district_id):
        raise ValueError('District not found.')


def create_store(db: Session, *, fields: dict, category_ids: list[int] | None = None) -> Store:
    name = _clean(fields.get('name'))
    if not name:
        raise ValueError('Store name is required.')
    code = _clean(fields.get('code'))
    _assert_code_free(db, code)
    _check_district(db, fields.get('district_id'))

    store = Store(
        name=name,
        code=code,
        address=_clean(fields.get('address')),
        city=_clean(fields.get('city')),
        state=_clean(fields.get('state')),
        zip_code=_clean(fields.get('zip_code')),
        timezone=_clean(fields.get('timezone')),
        district_id=fields.get('district_id'),
    )
    db.add(store)
    db.flush()
    if category_ids:
        _set_categories(db, store.id, category_ids)
        db.flush()
    return store


def update_store(db: Session, *, store_id: int, fields: dict, category_ids: list[int] | None = None) -> Store:
    store = get_store(db, store_id)
    if 'name' in fields:
        name = _clean(fields['name'])
        if not name:
            raise ValueError('Store name is required.')
        store.name = name
    if 'code' in fields:
        code = _clean(fields['code'])
        _assert_code_free(db, code, exclude_store_id=store.id)
        store.code = code
    if 'district_id' in fields:
        _check_district(db, fields['district_id'])
        store.district_id = fields['district_id']
    for key in ('address', 'city', 'state', 'zip_code', 'timezone'):
        if key in fields:
            setattr(store, key, _clean(fields[key]))
    if category_ids is not None:
        _set_categories(db, store.id, category_ids)
    db.flush()
    return store


def delete_store(db: Session, *, store_id: int) -> None:
    store = get_store(db, store_id)
    db.delete(store)
    db.flush()


def get_store_detail(db: Session, *, principal: Principal, store_id: int) -> dict:
    store = get_store(db, store_id)
    if not has_store_scope(principal, store.id):
        raise PermissionError('Forbidden. You cannot access this store.')

    def _count(model, *conditions) -> int:
        return db.execute(select(func.count()).select_from(model).where(model.store_id == store.id, *conditions)).scalar_one()

    payload = serialize_store(store, _categories_by_store(db, [store.id]).get(store.id))
    payload['counts'] = {
        'assets': _count(Asset),
        'inventory_items': _count(InventoryItem),
        'technicians': _count(Technician),
        'open_work_orders': _count(
            WorkOrder, WorkOrder.status.in_([WorkOrderStatus.OPEN, WorkOrderStatus.IN_PROGRESS])
        ),
    }
    return payload


def ensure_store_qr_code(db: Session, *, store_id: int) -> Store:
    store = get_store(db, store_id)
    if not store.qr_code:
        store.qr_code = secrets.token_hex(16)
        db.flush()
    return store


def store_intake_url(store: Store) -> str:
    return f'{settings.base_url}/workorder-form/{store.qr_code}'


def store_qr_payload(store: Store) -> dict:
    url = store_intake_url(store)
    qr = segno.make(url, error='m')
    return {
        'qr_code': store.qr_code,
        'qr_url': url,
        'qr_image': qr.png_data_uri(scale=6, border=1),
        'store_name': store.name,
    }


def store_qr_png(store: Store) -> bytes:
    buffer = io.BytesIO()
    segno.make(store_intake_url(store), error='m').save(buffer, kind='png', scale=8, border=1)
    return buffer.getvalue()


def get_store_by_qr_code(db: Session, qr_code: str | None) -> Store:
    clean_code = (qr_code or '').strip()
    store = None
    if clean_code:
        store = db.execute(select(Store).where(Store.qr_code == clean_code)).scalar_one_or_none()
    if not store:
        raise LookupError('Invalid QR code.')
    return store


def get_public_store(db: Session, *, qr_code: str) -> dict:
    store = get_store_by_qr_code(db, qr_code)
    assets = db.execute(
        select(Asset)
        .where(Asset.store_id == store.id, Asset.status == AssetStatus.ACTIVE)
        .order_by(Asset.name.asc())
    ).scalars().all()
    return {
        'store': {'id': store.id, 'name': store.name, 'code': store.code},
        'assets': [
            {'id': asset.id, 'name': asset.name, 'asset_number': asset.asset_number, 'location': asset.location}
            for asset in assets
        ],
    }


def list_division_tree(db: Session, *, principal: Principal) -> list[dict]:
    divisions = db.execute(select(Division).order_by(Division.name.asc())).scalars().all()
    districts = db.execute(select(District).order_by(District.name.asc())).scalars().all()
    stores = db.execute(select(Store).where(Store.district_id.is_not(None)).order_by(Store.name.asc())).scalars().all()

    stores_by_district: dict[int, list[dict]] = {}
    for store in stores:
        if not has_store_scope(principal, store.id):
            continue
        stores_by_district.setdefault(store.district_id, []).append({'id': store.id, 'name': store.name, 'code': store.code})

    districts_by_division: dict[int, list[dict]] = {}
    for district in districts:
        districts_by_division.setdefault(district.division_id, []).append(
            {'id': district.id, 'name': district.name, 'stores': stores_by_district.get(district.id, [])}
        )

    return [
        {'id': division.id, 'name': division.name, 'districts': districts_by_division.get(division.id, [])}
        for division in divisions
    ]


def create_division(db: Session, *, name: str | None) -> Division:
    clean_name = _clean(name)
    if not clean_name:
        raise ValueError('Division name is required.')
    if db.execute(select(Division.id).where(Division.name == clean_name)).first():
        raise ValueError('Division name already exists.')
    division = Division(name=clean_name)
    db.add(division)
    db.flush()
    return division


def create_district(db: Session, *, name: str | None, division_id: int | None) -> District:
    clean_name = _clean(name)
    if not clean_name:
        raise ValueError('District name is required.')
    if division_id is None:
        raise ValueError('division_id is required.')
    if not db.get(Division, division_id):
        raise LookupError('Division not found.')
    district = District(name=clean_name, division_id=division_id)
    db.add(district)
    db.flush()
    return district


def list_district_stores(db: Session, *, principal: Principal, district_id: int) -> list[dict]:
    if not db.get(District, district_id):
        raise LookupError('District not found.')
    stores = db.execute(select(Store).where(Store.district_id == district_id).order_by(Store.name.asc())).scalars().all()
    return [serialize_store(store) for store in stores if has_store_scope(principal, store.id)]


def list_categories(db: Session) -> list[StoreCategory]:
    return db.execute(select(StoreCategory).order_by(StoreCategory.name.asc())).scalars().all()


def create_category(db: Session, *, name: str | None, description: str | None, color: str | None) -> StoreCategory:
    clean_name = _clean(name)
    if not clean_name:
        raise ValueError('Category name is required.')
    if db.execute(select(StoreCategory.id).where(func.lower(StoreCategory.name) == clean_name.lower())).first():
        raise ValueError('A category with this name already exists.')
    category = StoreCategory(name=clean_name, description=_clean(description), color=_clean(color))
    db.add(category)
    db.flush()
    return category


def delete_category(db: Session, *, category_id: int) -> None:
    category = db.get(StoreCategory, category_id)
    if not category:
        raise LookupError('Category not found.')
    db.execute(delete(StoreCategoryLink).where(StoreCategoryLink.category_id == category_id))
    db.delete(category)
    db.flush()
