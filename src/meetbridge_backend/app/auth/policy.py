# src/meetbridge_backend/app/auth/policy.py
from __future__ import annotations

import logging
from typing import Iterable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from meetbridge_backend.app.auth.identity import IdentityClaims
from meetbridge_backend.app.core.config import Settings
from meetbridge_backend.app.core.errors import AuthFlowError, ErrorKind
from meetbridge_backend.app.core.trace import auth_trace
from meetbridge_backend.app.db.models import AllowedEmail

log = logging.getLogger(__name__)


class AllowList(Protocol):
    async def is_allowed(self, email: str) -> bool:
        """
        False means the email is definitively not on the list.
        A failed lookup raises AuthFlowError(ALLOW_LIST_CHECK_FAILED) instead.
        """
        ...


def _normalize(email: str) -> str:
    return (email or "").strip().lower()


class OpenAllowList:
    """Everyone with a non-empty email is allowed."""

    async def is_allowed(self, email: str) -> bool:
        return bool(_normalize(email))


class StaticAllowList:
    """
    Allow-list from configuration. Entries are full addresses
    ("alice@example.com") or whole domains ("*@example.com").
    """

    def __init__(self, entries: Iterable[str]):
        self._emails = set()
        self._domains = set()
        for entry in entries:
            e = _normalize(entry)
            if e.startswith("*@"):
                self._domains.add(e[2:])
            elif e:
                self._emails.add(e)

    async def is_allowed(self, email: str) -> bool:
        e = _normalize(email)
        if not e:
            return False
        if e in self._emails:
            return True
        return e.rpartition("@")[2] in self._domains


class SqlAllowList:
    """Allow-list backed by the allowed_emails table."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def is_allowed(self, email: str) -> bool:
        e = _normalize(email)
        if not e:
            return False
        try:
            async with self._sessionmaker() as db:
                row = await db.get(AllowedEmail, e)
        except SQLAlchemyError as ex:
            log.error("allow-list lookup failed email=%s err=%s", e, ex)
            raise AuthFlowError(
                ErrorKind.ALLOW_LIST_CHECK_FAILED,
                f"email cannot be validated in allow list: {type(ex).__name__}",
                {"email": e},
            )
        return row is not None


def build_allow_list(settings: Settings, sessionmaker: async_sessionmaker[AsyncSession]) -> AllowList:
    mode = settings.allow_list_mode
    if mode == "open":
        return OpenAllowList()
    if mode == "static":
        return StaticAllowList(settings.allowed_emails)
    if mode == "db":
        return SqlAllowList(sessionmaker)
    raise ValueError(f"Unsupported ALLOW_LIST_MODE: {mode}")


async def enforce_policy(claims: IdentityClaims, allow_list: AllowList) -> None:
    """
    Allow-list first, then verified email. The first failing check ends it;
    an address that is not allowed is never checked for verification.
    """
    try:
        ok = await allow_list.is_allowed(claims.email)
    except AuthFlowError:
        raise
    except Exception as ex:
        raise AuthFlowError(
            ErrorKind.ALLOW_LIST_CHECK_FAILED,
            f"email cannot be validated in allow list: {ex}",
            {"email": claims.email, "sub": claims.subject_id},
        ) from ex

    if not ok:
        raise AuthFlowError(
            ErrorKind.EMAIL_NOT_ALLOWED,
            "email not found in allow list",
            {"email": claims.email, "sub": claims.subject_id},
        )

    if not claims.email_verified:
        raise AuthFlowError(
            ErrorKind.EMAIL_NOT_VERIFIED,
            "email is not verified",
            {"email": claims.email, "sub": claims.subject_id},
        )

    auth_trace("oauth.policy.ok", sub=claims.subject_id, email=claims.email)
