from __future__ import annotations

import logging

from aisecretary.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def configure_logging() -> None:
    # Configure root logging once per process; repeated app factories reuse it.
    global _configured
    if _configured:
        return
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    # httpx logs every request at INFO; keep provider chatter at WARNING.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
