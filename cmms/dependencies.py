from __future__ import annotations

from contextlib import contextmanager

from fastapi import HTTPException, Request
from fastapi.templating import Jinja2Templates


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def ok(data=None, **extra) -> dict:
    payload = {'success': True, 'data': data}
    payload.update(extra)
    return payload


@contextmanager
def service_errors():
    """Translate service-layer exceptions into HTTP errors."""
    try:
        yield
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc) or 'Forbidden') from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc).strip("'") or 'Not found') from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
