# src/meetbridge_backend/app/core/logging.py
from __future__ import annotations
import logging
import os

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR":    logging.ERROR,
    "WARNING":  logging.WARNING,
    "INFO":     logging.INFO,
    "DEBUG":    logging.DEBUG,
}

_FMT = "%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def level_from_env(var: str = "LOG_LEVEL", default: str = "INFO") -> int:
    val = (os.getenv(var, default) or "").strip().upper()
    return _LEVELS.get(val, _LEVELS[default])


def setup_logging() -> None:
    """
    Configure root logging once. Idempotent.
    LOG_LEVEL controls verbosity (default INFO). When something else
    (pytest, uvicorn) already installed handlers, only the level is applied.
    """
    root = logging.getLogger()
    level = level_from_env()
    root.setLevel(level)
    if root.handlers:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=_FMT, datefmt=_DATEFMT))
    root.addHandler(handler)

    # httpx logs every request line at INFO; keep provider chatter at WARNING
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
