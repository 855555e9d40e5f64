from __future__ import annotations

from starlette.exceptions import HTTPException
from starlette.staticfiles import StaticFiles
from starlette.types import Scope

from cmms.services.upload_service import media_type_for


class UploadFiles(StaticFiles):
    """Serves stored uploads as inert downloads of the media type they were accepted as."""

    async def get_response(self, path: str, scope: Scope):
        media_type = media_type_for(path)
        if media_type is None:
            raise HTTPException(status_code=404)
        response = await super().get_response(path, scope)
        if response.status_code == 200:
            response.headers['Content-Type'] = media_type
            response.headers['Content-Disposition'] = 'attachment'
            response.headers['Content-Security-Policy'] = "default-src 'none'; sandbox"
        return response
