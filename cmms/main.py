from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from cmms.config import settings
from cmms.db import SessionLocal, engine
from cmms.dependencies import ok
from cmms.logging_config import configure_logging
from cmms.models import Base
from cmms.routers import (
    assets,
    auth,
    inventory,
    notes,
    public_pages,
    purchase_orders,
    reports,
    requests,
    schedules,
    stores,
    technicians,
    transfers,
    uploads,
    users,
    vendors,
    workorders,
)
from cmms.security.csrf import install_csrf_cookie_middleware
from cmms.security.files import UploadFiles
from cmms.security.headers import install_security_headers
from cmms.security.sessions import install_auth_session_middleware

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'


def _csrf_token(request: Request) -> str:
    return getattr(request.state, 'csrf_token', '')


def _error(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse({'success': False, 'error': message}, status_code=status_code, headers=headers)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return 'Invalid request.'
    first = errors[0]
    field = '.'.join(str(part) for part in first.get('loc', ()) if part not in ('body', 'query', 'path'))
    message = first.get('msg', 'Invalid value')
    return f'{field}: {message}' if field else message


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else 'Request failed'
        return _error(exc.status_code, detail, headers=getattr(exc, 'headers', None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error(400, _validation_message(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception('Unhandled error on %s %s', request.method, request.url.path)
        return _error(500, 'Internal server error')


def create_app(session_factory: sessionmaker | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if settings.auto_create_tables and session_factory is None:
            Base.metadata.create_all(engine)
            logger.info('Database tables ensured')
        yield
        if session_factory is None:
            engine.dispose()

    app = FastAPI(title='Store Maintenance CMMS', lifespan=lifespan)
    app.state.session_factory = session_factory or SessionLocal

    app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    app.state.templates.env.globals['csrf_token'] = _csrf_token

    install_exception_handlers(app)
    install_security_headers(app)
    install_csrf_cookie_middleware(app)
    install_auth_session_middleware(app)

    app.include_router(auth.router)
    app.include_router(stores.router)
    app.include_router(assets.router)
    app.include_router(inventory.router)
    app.include_router(technicians.router)
    app.include_router(vendors.router)
    app.include_router(workorders.router)
    app.include_router(notes.router)
    app.include_router(schedules.router)
    app.include_router(requests.router)
    app.include_router(transfers.router)
    app.include_router(purchase_orders.router)
    app.include_router(users.router)
    app.include_router(uploads.router)
    app.include_router(reports.router)
    app.include_router(public_pages.router)

    app.mount('/files', UploadFiles(directory=settings.upload_dir, check_dir=False), name='files')

    @app.get('/health')
    def health():
        return ok({'status': 'ok'})

    @app.get('/robots.txt', response_class=PlainTextResponse)
    def robots_txt() -> str:
        return 'User-agent: *\nDisallow: /\n'

    return app


app = create_app()
