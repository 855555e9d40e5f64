from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, require_admin_like
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok, service_errors
from cmms.schemas import NoteIn
from cmms.security.csrf import verify_csrf
from cmms.services.audit_service import log_audit
from cmms.services.note_service import create_note, delete_note, list_notes
from cmms.services.serialization import model_to_dict

router = APIRouter(prefix='/notes', tags=['notes'])


@router.get('')
def notes_list(
    work_order_id: int | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with service_errors():
        notes = list_notes(db, principal=principal, work_order_id=work_order_id)
    return ok([model_to_dict(note) for note in notes])


@router.post('', status_code=201)
def note_create(
    body: NoteIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        note = create_note(
            db,
            principal=principal,
            work_order_id=body.work_order_id,
            text=body.text,
            author=body.author or principal.name or principal.email,
        )
    db.commit()
    return ok(model_to_dict(note))


@router.delete('/{note_id}')
def note_delete(
    note_id: int,
    request: Request,
    principal: Principal = Depends(require_admin_like),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with service_errors():
        delete_note(db, principal=principal, note_id=note_id)
    log_audit(db, actor_user_id=principal.id, action='NOTE_DELETED', ip=get_client_ip(request), metadata={'note_id': note_id})
    db.commit()
    return ok(None, message='Note deleted')
