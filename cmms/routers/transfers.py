from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import TransferIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.serialization import model_to_dict
from cmms.services.transfer_service import create_transfer, list_transfers

router = APIRouter(prefix='/transfers', tags=['transfers'])


@router.get('')
def transfers_list(
    work_order_id: int | None = None,
    asset_id: int | None = None,
    inventory_item_id: int | None = None,
    store_id: int | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return ok(
        list_transfers(
            db,
            principal=principal,
            work_order_id=work_order_id,
            asset_id=asset_id,
            inventory_item_id=inventory_item_id,
            store_id=store_id,
        )
    )


@router.post('', status_code=201)
def transfer_create(
    body: TransferIn,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        transfer = create_transfer(db, principal=principal, fields=body.model_dump())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='TRANSFER_CREATED',
        ip=get_client_ip(request),
        store_id=transfer.from_store_id,
        metadata={
            'transfer_id': transfer.id,
            'type': transfer.type.value,
            'to_store_id': transfer.to_store_id,
            'quantity': transfer.quantity,
        },
    )
    db.commit()
    return ok(model_to_dict(transfer))
