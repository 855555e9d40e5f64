from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from cmms.auth import Principal, can_see_all_stores, require_admin_like, require_master_admin
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import DistrictIn, DivisionIn, StoreCategoryIn, StoreIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.serialization import model_to_dict
from cmms.services.store_service import (
    STORE_FIELDS,
    create_category,
    create_district,
    create_division,
    create_store,
    delete_category,
    delete_store,
    ensure_store_qr_code,
    get_public_store,
    get_store_detail,
    list_categories,
    list_district_stores,
    list_division_tree,
    list_stores,
    serialize_store,
    store_qr_payload,
    store_qr_png,
    update_store,
)

router = APIRouter(tags=['stores'])


@router.get('/divisions')
def divisions_tree(
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    return ok(list_division_tree(db, principal=principal))


@router.post('/divisions', status_code=201)
def division_create(
    body: DivisionIn,
    request: Request,
    principal: Principal = Depends(require_master_admin),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        division = create_division(db, name=body.name)
    log_audit(db, actor_user_id=principal.id, action='DIVISION_CREATED', ip=get_client_ip(request), metadata={'division_id': division.id})
    db.commit()
    return ok(model_to_dict(division))


@router.post('/districts', status_code=201)
def district_create(
    body: DistrictIn,
    request: Request,
    principal: Principal = Depends(require_master_admin),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        district = create_district(db, name=body.name, division_id=body.division_id)
    log_audit(db, actor_user_id=principal.id, action='DISTRICT_CREATED', ip=get_client_ip(request), metadata={'district_id': district.id})
    db.commit()
    return ok(model_to_dict(district))


@router.get('/districts/{district_id}/stores')
def district_stores(
    district_id: int,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    with service_errors():
        return ok(list_district_stores(db, principal=principal, district_id=district_id))


@router.get('/store-categories')
def categories_list(
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    return ok([model_to_dict(category) for category in list_categories(db)])


@router.post('/store-categories', status_code=201)
def category_create(
    body: StoreCategoryIn,
    request: Request,
    principal: Principal = Depends(require_master_admin),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        category = create_category(db, name=body.name, description=body.description, color=body.color)
    log_audit(db, actor_user_id=principal.id, action='STORE_CATEGORY_CREATED', ip=get_client_ip(request), metadata={'category_id': category.id})
    db.commit()
    return ok(model_to_dict(category))


@router.delete('/store-categories/{category_id}')
def category_delete(
    category_id: int,
    request: Request,
    principal: Principal = Depends(require_master_admin),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        delete_category(db, category_id=category_id)
    log_audit(db, actor_user_id=principal.id, action='STORE_CATEGORY_DELETED', ip=get_client_ip(request), metadata={'category_id': category_id})
    db.commit()
    return ok(None, message='Category deleted')


@router.get('/stores')
def stores_list(
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    if can_see_all_stores(principal.role):
        return ok(list_stores(db))
    if principal.store_id is None:
        return ok([])
    return ok(list_stores(db, store_id=principal.store_id))


@router.post('/stores', status_code=201)
def store_create(
    body: StoreIn,
    request: Request,
    principal: Principal = Depends(require_master_admin),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        store = create_store(db, fields=body.model_dump(include=set(STORE_FIELDS)), category_ids=body.category_ids)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='STORE_CREATED',
        ip=get_client_ip(request),
        store_id=store.id,
        metadata={'code': store.code, 'name': store.name},
    )
    db.commit()
    return ok(serialize_store(store))


@router.get('/stores/qr/{qr_code}')
def store_by_qr(qr_code: str, db: Session = Depends(get_db)):
    with service_errors():
        return ok(get_public_store(db, qr_code=qr_code))


@router.get('/stores/{store_id}')
def store_detail(
    store_id: int,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    with service_errors():
        return ok(get_store_detail(db, principal=principal, store_id=store_id))


@router.patch('/stores/{store_id}')
def store_update(
    store_id: int,
    body: StoreIn,
    request: Request,
    principal: Principal = Depends(require_master_admin),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    fields = body.model_dump(include=set(STORE_FIELDS), exclude_unset=True)
    with service_errors():
        store = update_store(db, store_id=store_id, fields=fields, category_ids=body.category_ids)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='STORE_UPDATED',
        ip=get_client_ip(request),
        store_id=store.id,
        metadata={'fields': sorted(fields)},
    )
    db.commit()
    return ok(serialize_store(store))


@router.delete('/stores/{store_id}')
def store_delete(
    store_id: int,
    request: Request,
    principal: Principal = Depends(require_master_admin),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        delete_store(db, store_id=store_id)
    log_audit(db, actor_user_id=principal.id, action='STORE_DELETED', ip=get_client_ip(request), metadata={'store_id': store_id})
    db.commit()
    return ok(None, message='Store deleted')


@router.get('/stores/{store_id}/qr')
def store_qr(
    store_id: int,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    with service_errors():
        get_store_detail(db, principal=principal, store_id=store_id)
        store = ensure_store_qr_code(db, store_id=store_id)
    db.commit()
    return ok(store_qr_payload(store))


@router.get('/stores/{store_id}/qr.png')
def store_qr_image(
    store_id: int,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
):
    with service_errors():
        get_store_detail(db, principal=principal, store_id=store_id)
        store = ensure_store_qr_code(db, store_id=store_id)
    db.commit()
    return Response(
        content=store_qr_png(store),
        media_type='image/png',
        headers={'Content-Disposition': f'inline; filename="store-{store.id}-qr.png"'},
    )
