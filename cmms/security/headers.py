from fastapi import FastAPI, Request
from starlette.responses import Response


BASE_HEADERS = {
    'X-Robots-Tag': 'noindex, nofollow, noarchive',
    'X-Content-Type-Options': 'nosniff',
    'Referrer-Policy': 'same-origin',
}
NO_STORE_PREFIXES = ('/share/', '/workorders/shared/', '/auth/', '/mobile/auth')


def install_security_headers(app: FastAPI) -> None:
    @app.middleware('http')
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers.update(BASE_HEADERS)
        # Share links and credential responses must not sit in shared caches.
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers['Cache-Control'] = 'no-store'
        return response
