from datetime import date, timedelta

from sqlalchemy import select

from cmms.db import SessionLocal
from cmms.models import (
    Asset,
    District,
    Division,
    InventoryItem,
    PreventiveSchedule,
    Store,
    Technician,
    User,
    UserRole,
)
from cmms.security.passwords import hash_password
from cmms.services.sequence_service import asset_scope, next_sequence_value


def _ensure_user(db, *, email: str, password: str, role: UserRole, store_id: int | None, **extra) -> User:
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user:
        user = User(
            email=email,
            password_hash=hash_password(password),
            role=role,
            store_id=store_id,
            active=True,
            **extra,
        )
        db.add(user)
        db.flush()
    return user


def seed() -> None:
    with SessionLocal() as db:
        division = db.execute(select(Division).where(Division.name == 'Central')).scalar_one_or_none()
        if not division:
            division = Division(name='Central')
            db.add(division)
            db.flush()

        district = db.execute(select(District).where(District.name == 'Metro', District.division_id == division.id)).scalar_one_or_none()
        if not district:
            district = District(name='Metro', division_id=division.id)
            db.add(district)
            db.flush()

        store = db.execute(select(Store).where(Store.code == 'STORE-001')).scalar_one_or_none()
        if not store:
            store = Store(name='Downtown', code='STORE-001', city='Springfield', district_id=district.id)
            db.add(store)
            db.flush()

        technician = db.execute(select(Technician).where(Technician.email == 'tech@example.com')).scalar_one_or_none()
        if not technician:
            technician = Technician(name='Sam Tech', email='tech@example.com', store_id=store.id, active=True)
            db.add(technician)
            db.flush()

        asset = db.execute(select(Asset).where(Asset.store_id == store.id, Asset.name == 'Walk-in Cooler')).scalar_one_or_none()
        if not asset:
            asset = Asset(
                asset_number=next_sequence_value(db, asset_scope(store.id)),
                name='Walk-in Cooler',
                location='Back room',
                make='ColdCo',
                category='Refrigeration',
                store_id=store.id,
            )
            db.add(asset)
            db.flush()

        item = db.execute(
            select(InventoryItem).where(InventoryItem.store_id == store.id, InventoryItem.part_number == 'FLT-100')
        ).scalar_one_or_none()
        if not item:
            db.add(
                InventoryItem(
                    name='Condenser filter',
                    part_number='FLT-100',
                    quantity_on_hand=4,
                    reorder_threshold=2,
                    location='Shelf A',
                    store_id=store.id,
                )
            )

        schedule = db.execute(select(PreventiveSchedule).where(PreventiveSchedule.asset_id == asset.id)).scalar_one_or_none()
        if not schedule:
            db.add(
                PreventiveSchedule(
                    title='Clean condenser coils',
                    asset_id=asset.id,
                    store_id=store.id,
                    frequency_days=30,
                    next_due_date=date.today() + timedelta(days=7),
                    active=True,
                )
            )

        _ensure_user(db, email='master@example.com', password='masterpass', role=UserRole.MASTER_ADMIN, store_id=None)
        _ensure_user(db, email='storeadmin@example.com', password='storeadminpass', role=UserRole.STORE_ADMIN, store_id=store.id)
        _ensure_user(db, email='manager@example.com', password='managerpass', role=UserRole.USER, store_id=store.id)
        _ensure_user(
            db,
            email='tech@example.com',
            password='techpass',
            role=UserRole.TECHNICIAN,
            store_id=store.id,
            technician_id=technician.id,
            name=technician.name,
        )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
