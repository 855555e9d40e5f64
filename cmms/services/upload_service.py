from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timezone
from pathlib import Path

from cmms.config import settings


logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    'image/jpeg': 'jpg',
    'image/jpg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'video/mp4': 'mp4',
    'video/mpeg': 'mpeg',
    'video/quicktime': 'mov',
    'video/x-msvideo': 'avi',
}
STORED_MEDIA_TYPES = {
    'jpg': 'image/jpeg',
    'png': 'image/png',
    'gif': 'image/gif',
    'webp': 'image/webp',
    'mp4': 'video/mp4',
    'mpeg': 'video/mpeg',
    'mov': 'video/quicktime',
    'avi': 'video/x-msvideo',
}
DEFAULT_FILE_TYPE = 'workorder'
RESERVED_FILE_TYPES = {'reports'}
_FILE_TYPE = re.compile(r'^[a-z0-9_-]{1,32}$')


def upload_root() -> Path:
    return Path(settings.upload_dir).resolve()


def media_type_for(path: str) -> str | None:
    """Content type for a stored upload, or None when the suffix is not one we write."""
    suffix = Path(path).suffix.lower().lstrip('.')
    return STORED_MEDIA_TYPES.get(suffix)


def store_upload(
    *,
    store_id: int,
    content: bytes,
    content_type: str | None,
    filename: str | None,
    file_type: str | None = None,
) -> dict:
    clean_type = (content_type or '').split(';')[0].strip().lower()
    if clean_type not in ALLOWED_CONTENT_TYPES:
        raise ValueError('Invalid file type. Only images and videos are allowed.')
    if not content:
        raise ValueError('No file provided.')
    if len(content) > settings.upload_max_bytes:
        raise ValueError(f'File too large. Maximum size is {settings.upload_max_bytes // (1024 * 1024)}MB.')

    folder = (file_type or DEFAULT_FILE_TYPE).strip().lower()
    if not _FILE_TYPE.match(folder) or folder in RESERVED_FILE_TYPES:
        raise ValueError('Invalid file_type.')

    timestamp = int(datetime.now(tz=timezone.utc).timestamp() * 1000)
    name = f'{timestamp}-{secrets.token_hex(4)}.{ALLOWED_CONTENT_TYPES[clean_type]}'
    relative = Path('location') / str(store_id) / folder / name
    target = upload_root() / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    logger.info('Stored upload %s (%s bytes)', relative.as_posix(), len(content))

    return {
        'path': relative.as_posix(),
        'url': f'/files/{relative.as_posix()}',
        'content_type': clean_type,
        'size': len(content),
        'filename': filename,
    }
