"""Process-wide logging for storyteller sessions."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from storyteller.config import LogSettings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
HTTP_LOGGERS = ("httpx", "httpcore")

_active: LogSettings | None = None
_installed: list[logging.Handler] = []


def _build_handlers(settings: LogSettings, level: int) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    console = logging.StreamHandler()
    console.setLevel(level)
    settings.path.parent.mkdir(parents=True, exist_ok=True)
    # The file keeps DEBUG detail regardless of the console threshold.
    session_file = RotatingFileHandler(
        filename=settings.path,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    session_file.setLevel(logging.DEBUG)
    for handler in (console, session_file):
        handler.setFormatter(formatter)
    return [console, session_file]


def configure_runtime_logging(settings: LogSettings) -> bool:
    """Install console and rotating-file handlers on the root logger.

    Repeated calls with the same settings are ignored. Returns True when
    handlers were (re)installed.
    """
    global _active
    if _active == settings:
        return False

    level = logging.getLevelName(settings.level)
    root = logging.getLogger()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed[:] = _build_handlers(settings, level)
    for handler in _installed:
        root.addHandler(handler)
    root.setLevel(min(level, logging.INFO))

    http_level = logging.getLevelName(settings.http_level)
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)

    _active = settings
    logging.getLogger(__name__).debug(
        "logging.configured level=%s path=%s", settings.level, settings.path
    )
    return True
