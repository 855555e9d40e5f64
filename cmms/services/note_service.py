from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import Principal, has_store_scope
from cmms.models import Note, WorkOrder
from cmms.services.workorder_service import get_work_order_for_principal


DEFAULT_AUTHOR = 'System'


def list_notes(db: Session, *, principal: Principal, work_order_id: int | None) -> list[Note]:
    if work_order_id is None:
        raise ValueError('work_order_id is required.')
    get_work_order_for_principal(db, principal=principal, work_order_id=work_order_id)
    return db.execute(
        select(Note).where(Note.work_order_id == work_order_id).order_by(Note.created_at.asc(), Note.id.asc())
    ).scalars().all()


def create_note(
    db: Session,
    *,
    principal: Principal,
    work_order_id: int | None,
    text: str | None,
    author: str | None = None,
) -> Note:
    clean_text = (text or '').strip()
    if not clean_text:
        raise ValueError('Note text is required.')
    if work_order_id is None:
        raise ValueError('work_order_id is required.')
    get_work_order_for_principal(db, principal=principal, work_order_id=work_order_id)

    note = Note(work_order_id=work_order_id, text=clean_text, author=(author or '').strip() or DEFAULT_AUTHOR)
    db.add(note)
    db.flush()
    return note


def delete_note(db: Session, *, principal: Principal, note_id: int) -> None:
    note = db.get(Note, note_id)
    if not note:
        raise LookupError('Note not found.')
    work_order = db.get(WorkOrder, note.work_order_id)
    if work_order is not None and not has_store_scope(principal, work_order.store_id):
        raise PermissionError('Forbidden. You cannot access this note.')
    db.delete(note)
    db.flush()
