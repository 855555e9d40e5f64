"""Outbound email. Delivery problems are logged and never raised to callers.

Work-order and request notifications are queued on the database session and
only sent once that session commits, so nobody hears about a row that was
rolled back.
"""
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from sqlalchemy import event
from sqlalchemy.orm import Session

from cmms.config import settings


logger = logging.getLogger(__name__)

PENDING_EMAILS = 'pending_emails'


def send_email(*, to: str | list[str] | None, subject: str, body: str) -> bool:
    recipients = [to] if isinstance(to, str) else [addr for addr in (to or []) if addr]
    if not recipients:
        return False
    if not settings.email_enabled:
        logger.warning('SMTP is not configured; skipping email %r to %s', subject, ', '.join(recipients))
        return False

    message = EmailMessage()
    message['Subject'] = subject
    message['From'] = settings.email_from or settings.smtp_user
    message['To'] = ', '.join(recipients)
    message.set_content(body)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as smtp:
            smtp.starttls()
            smtp.login(settings.smtp_user, settings.smtp_password)
            smtp.send_message(message)
    except (OSError, smtplib.SMTPException):
        logger.exception('Failed to send email %r to %s', subject, ', '.join(recipients))
        return False
    return True


def queue_email(db: Session, *, to: str | list[str] | None, subject: str, body: str) -> None:
    db.info.setdefault(PENDING_EMAILS, []).append({'to': to, 'subject': subject, 'body': body})


@event.listens_for(Session, 'after_commit')
def _send_pending_emails(session: Session) -> None:
    for message in session.info.pop(PENDING_EMAILS, []):
        send_email(**message)


@event.listens_for(Session, 'after_rollback')
def _drop_pending_emails(session: Session) -> None:
    dropped = session.info.pop(PENDING_EMAILS, [])
    if dropped:
        logger.info('Dropped %s queued email(s) after rollback', len(dropped))


def _work_order_link(work_order) -> str:
    return f'{settings.base_url}/workorders/{work_order.id}'


def notify_work_order_assigned(db: Session, work_order, *, technician_email: str | None, technician_name: str | None) -> None:
    number = work_order.work_order_number or work_order.id
    body = '\n'.join(
        [
            f'Hello {technician_name or "there"},',
            '',
            f'Work order #{number} has been assigned to you.',
            f'Title: {work_order.title}',
            f'Priority: {work_order.priority.value}',
            f'Due: {work_order.due_date.isoformat() if work_order.due_date else "not set"}',
            '',
            _work_order_link(work_order),
        ]
    )
    queue_email(db, to=technician_email, subject=f'Work order #{number} assigned: {work_order.title}', body=body)


def notify_work_order_updated(db: Session, work_order, *, recipient_email: str | None, changes: list[str]) -> None:
    number = work_order.work_order_number or work_order.id
    body = '\n'.join(
        [
            f'Work order #{number} ({work_order.title}) was updated.',
            '',
            *[f'- {change}' for change in changes],
            '',
            _work_order_link(work_order),
        ]
    )
    queue_email(db, to=recipient_email, subject=f'Work order #{number} updated', body=body)


def notify_request_submitted(db: Session, request_row, *, recipient_emails: list[str], store_name: str | None) -> None:
    number = request_row.request_number or request_row.id
    body = '\n'.join(
        [
            f'A new maintenance request was submitted{f" for {store_name}" if store_name else ""}.',
            '',
            f'Request #{number}: {request_row.title}',
            f'Priority: {request_row.priority.value}',
            f'Submitted by: {request_row.created_by}',
            '',
            request_row.description,
        ]
    )
    queue_email(db, to=recipient_emails, subject=f'New maintenance request #{number}', body=body)
