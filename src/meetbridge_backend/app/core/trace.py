# src/meetbridge_backend/app/core/trace.py
from __future__ import annotations
import logging
import os
import time
from typing import Any, Mapping

from .logging import setup_logging

# Ensure logging is configured before we emit anything
setup_logging()

_log = logging.getLogger("meetbridge.auth")

# values under these keys are masked before they reach a log line
SECRET_KEYS = frozenset({
    "client_secret",
    "token",
    "bearer_token",
    "access_token",
    "id_token",
    "code",
})


def _trace_enabled() -> bool:
    return (os.getenv("AUTH_TRACE", "")).lower() in ("1", "true", "yes", "on")


def mask(value: Any, keep: int = 4) -> str:
    if not value:
        return "<none>"
    s = str(value)
    return s[:keep] + "...(masked)"


def _fmt_kv(d: Mapping[str, Any]) -> str:
    return " ".join(
        f"{k}={mask(d[k]) if k in SECRET_KEYS else d[k]}" for k in d
    )


def auth_trace(event: str, **kv: Any) -> None:
    """
    Emit a single-line structured log ONLY when AUTH_TRACE=true.
    Example:
      [auth] oauth.provider.resolved ts=... site=google provider=google
    """
    if not _trace_enabled():
        return
    kv2 = {"ts": int(time.time()), **kv}
    _log.info("[auth] %s %s", event, _fmt_kv(kv2))


def audit(event: str, level: int = logging.WARNING, **kv: Any) -> None:
    """
    Always-on audit line for rejected callbacks. Carries the identity
    context (email, sub, parsed details); secrets are masked.
    """
    _log.log(level, "[audit] %s %s", event, _fmt_kv(kv))
