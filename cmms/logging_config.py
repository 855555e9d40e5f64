from __future__ import annotations

import logging

from cmms.config import settings


LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if any(getattr(handler, '_cmms_handler', False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._cmms_handler = True
    root.addHandler(handler)
    root.setLevel((level or settings.log_level).upper())
