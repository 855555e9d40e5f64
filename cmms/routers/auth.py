from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from cmms.auth import Principal, get_current_principal, is_user
from cmms.config import settings
from cmms.db import get_db
from cmms.dependencies import get_client_ip, ok
from cmms.models import SessionKind, User
from cmms.schemas import LoginIn
from cmms.security.csrf import verify_csrf
from cmms.security.passwords import verify_password
from cmms.security.sessions import create_web_session, revoke_web_session
from cmms.services.audit_service import log_audit, log_auth_event
from cmms.services.parsing import normalize_email
from cmms.services.user_service import serialize_user

router = APIRouter(tags=['auth'])

INVALID_CREDENTIALS = 'Invalid email or password'


def _authenticate(db: Session, request: Request, body: LoginIn) -> User:
    email = normalize_email(body.email)
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    failure_reason = None
    if not user:
        failure_reason = 'UNKNOWN_EMAIL'
    elif not user.active:
        failure_reason = 'INACTIVE_USER'
    elif not verify_password(body.password, user.password_hash):
        failure_reason = 'BAD_PASSWORD'

    if failure_reason:
        log_auth_event(
            db,
            attempted_email=email,
            success=False,
            failure_reason=failure_reason,
            user_id=user.id if user else None,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
    return user


@router.post('/auth/login')
def login(request: Request, body: LoginIn, db: Session = Depends(get_db)):
    user = _authenticate(db, request, body)
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    token = create_web_session(db, user.id, ip=ip, user_agent=user_agent)
    log_auth_event(db, attempted_email=user.email, success=True, user_id=user.id, ip=ip, user_agent=user_agent)
    log_audit(db, actor_user_id=user.id, action='AUTH_LOGIN', ip=ip, store_id=user.store_id, metadata={'email': user.email})
    db.commit()

    payload = ok({'user': serialize_user(user), 'csrf_token': getattr(request.state, 'csrf_token', None)})
    response = JSONResponse(jsonable_encoder(payload))
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/auth/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        token = authorization[7:].strip()
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_user_id=principal.id if principal else None,
        action='AUTH_LOGOUT',
        ip=get_client_ip(request),
        metadata={},
    )
    db.commit()

    response = JSONResponse(ok(None, message='Logged out'))
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/auth/me')
def me(principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    user = db.get(User, principal.id)
    if not user:
        raise HTTPException(status_code=401, detail='Unauthorized')
    return ok(serialize_user(user))


@router.post('/mobile/auth')
def mobile_auth(request: Request, body: LoginIn, db: Session = Depends(get_db)):
    user = _authenticate(db, request, body)
    if not is_user(user.role):
        raise HTTPException(status_code=403, detail='Mobile app access is restricted to store managers')

    ip = get_client_ip(request)
    token = create_web_session(db, user.id, ip=ip, user_agent=request.headers.get('user-agent'), kind=SessionKind.MOBILE)
    log_auth_event(db, attempted_email=user.email, success=True, user_id=user.id, ip=ip, user_agent=request.headers.get('user-agent'))
    log_audit(db, actor_user_id=user.id, action='AUTH_MOBILE_LOGIN', ip=ip, store_id=user.store_id, metadata={'email': user.email})
    db.commit()
    return ok(
        {
            'token': token,
            'token_type': 'bearer',
            'expires_in_days': settings.mobile_token_ttl_days,
            'user': serialize_user(user),
        }
    )
