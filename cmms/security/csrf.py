from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, status

from cmms.config import settings


CSRF_COOKIE_NAME = 'csrf_token'
CSRF_HEADER_NAME = 'x-csrf-token'
CSRF_FORM_FIELD = 'csrf_token'
SAFE_METHODS = {'GET', 'HEAD', 'OPTIONS'}


def install_csrf_cookie_middleware(app) -> None:
    @app.middleware('http')
    async def csrf_cookie_middleware(request: Request, call_next):
        csrf_token = request.cookies.get(CSRF_COOKIE_NAME)
        if not csrf_token:
            csrf_token = secrets.token_urlsafe(24)
        request.state.csrf_token = csrf_token

        response = await call_next(request)
        if request.cookies.get(CSRF_COOKIE_NAME) != csrf_token:
            response.set_cookie(
                key=CSRF_COOKIE_NAME,
                value=csrf_token,
                httponly=False,
                secure=settings.session_cookie_secure,
                samesite='lax',
            )
        return response


async def verify_csrf(request: Request) -> None:
    """Double-submit check for cookie-authenticated writes.

    Bearer-token callers are not exposed to cross-site form posts and skip it.
    """
    if request.method in SAFE_METHODS:
        return
    if getattr(request.state, 'auth_source', None) != 'cookie':
        return

    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    sent_token = request.headers.get(CSRF_HEADER_NAME)
    if not sent_token and request.headers.get('content-type', '').startswith(
        ('application/x-www-form-urlencoded', 'multipart/form-data')
    ):
        form = await request.form()
        sent_token = form.get(CSRF_FORM_FIELD)
    if not sent_token or not cookie_token or not secrets.compare_digest(str(sent_token), cookie_token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Invalid CSRF token')
