# src/meetbridge_backend/app/core/config.py
from __future__ import annotations

import os
from functools import lru_cache
from typing import Tuple

from pydantic import BaseModel, ConfigDict, SecretStr

# ------------------------
# Environment helpers
# ------------------------
def _flag(name: str, default: str = "") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


def _str(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or "").strip()


def _csv(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "") or ""
    return tuple(p.strip() for p in raw.split(",") if p.strip())


class Settings(BaseModel):
    """
    Immutable snapshot of the environment the OAuth callback runs with.
    Build it with load_settings(); tests construct it directly.
    """
    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite+aiosqlite:///./meetbridge.db"
    db_echo: bool = False

    default_site: str = "google"

    google_client_id: str = ""
    google_client_secret: SecretStr = SecretStr("")
    google_iss: str = "https://accounts.google.com"
    google_jwks_uri: str = "https://www.googleapis.com/oauth2/v3/certs"

    github_client_id: str = ""
    github_client_secret: SecretStr = SecretStr("")

    provider_timeout_sec: float = 10.0

    # "db" | "static" | "open"
    allow_list_mode: str = "db"
    allowed_emails: Tuple[str, ...] = ()

    test_mode: bool = False


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Read Settings from the process environment (cached; call cache_clear() to re-read)."""
    return Settings(
        database_url=_str("DATABASE_URL", "sqlite+aiosqlite:///./meetbridge.db"),
        db_echo=_flag("DB_ECHO"),
        default_site=_str("DEFAULT_OAUTH_SITE", "google") or "google",
        google_client_id=_str("GOOGLE_CLIENT_ID"),
        google_client_secret=SecretStr(_str("GOOGLE_CLIENT_SECRET")),
        google_iss=_str("GOOGLE_ISS", "https://accounts.google.com"),
        google_jwks_uri=_str("GOOGLE_JWKS_URI", "https://www.googleapis.com/oauth2/v3/certs"),
        github_client_id=_str("GITHUB_CLIENT_ID"),
        github_client_secret=SecretStr(_str("GITHUB_CLIENT_SECRET")),
        provider_timeout_sec=float(_str("PROVIDER_TIMEOUT_SEC", "10") or "10"),
        allow_list_mode=(_str("ALLOW_LIST_MODE", "db") or "db").lower(),
        allowed_emails=_csv("ALLOWED_EMAILS"),
        test_mode=_flag("TEST_MODE"),
    )
