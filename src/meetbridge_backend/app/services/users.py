# src/meetbridge_backend/app/services/users.py
"""
User / token persistence for the OAuth callback.

A user is keyed by the provider subject id and owns an append-only list of
opaque tokens. The only write the callback needs is `upsert_with_token`:
"make sure the user exists, then attach this token", done atomically so two
concurrent first logins for one subject never produce two user rows.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from meetbridge_backend.app.core.errors import AuthFlowError, ErrorKind
from meetbridge_backend.app.core.trace import auth_trace
from meetbridge_backend.app.db.models import Token, User

log = logging.getLogger(__name__)


class PersistedToken(BaseModel):
    token_id: str


class PersistedUser(BaseModel):
    id: str
    name: str
    tokens: List[PersistedToken] = []


class UserStore(Protocol):
    async def find_user(self, subject_id: str) -> Optional[PersistedUser]: ...

    async def create_user(self, subject_id: str, name: str, token: str) -> PersistedUser: ...

    async def append_token(self, subject_id: str, token: str) -> None: ...

    async def upsert_with_token(self, subject_id: str, name: str, token: str) -> bool:
        """Returns True when the user row was created by this call."""
        ...


def _store_error(msg: str, subject_id: str) -> AuthFlowError:
    return AuthFlowError(ErrorKind.STORE_ERROR, msg, {"sub": subject_id})


# ------------------------------------------------------------
# SQLAlchemy-backed store
# ------------------------------------------------------------
_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class SqlUserStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    def _insert_user(self, db: AsyncSession, subject_id: str, name: str):
        dialect = db.bind.dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise _store_error(f"unsupported database dialect: {dialect}", subject_id)
        return (
            insert(User)
            .values(id=subject_id, name=name)
            .on_conflict_do_nothing(index_elements=[User.id])
        )

    async def find_user(self, subject_id: str) -> Optional[PersistedUser]:
        try:
            async with self._sessionmaker() as db:
                user = await db.get(User, subject_id)
                if user is None:
                    return None
                rows = await db.execute(
                    select(Token.token_id).where(Token.user_id == subject_id).order_by(Token.id)
                )
                return PersistedUser(
                    id=user.id,
                    name=user.name,
                    tokens=[PersistedToken(token_id=t) for t in rows.scalars()],
                )
        except SQLAlchemyError as ex:
            log.error("find_user failed sub=%s err=%s", subject_id, ex)
            raise _store_error(f"could not load user: {type(ex).__name__}", subject_id)

    async def create_user(self, subject_id: str, name: str, token: str) -> PersistedUser:
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    db.add(User(id=subject_id, name=name))
                    await db.flush()
                    db.add(Token(token_id=token, user_id=subject_id))
        except IntegrityError:
            raise _store_error("user already exists", subject_id)
        except SQLAlchemyError as ex:
            log.error("create_user failed sub=%s err=%s", subject_id, ex)
            raise _store_error(f"could not create user: {type(ex).__name__}", subject_id)
        return PersistedUser(id=subject_id, name=name, tokens=[PersistedToken(token_id=token)])

    async def append_token(self, subject_id: str, token: str) -> None:
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    if await db.get(User, subject_id) is None:
                        raise _store_error("user not found", subject_id)
                    db.add(Token(token_id=token, user_id=subject_id))
        except SQLAlchemyError as ex:
            log.error("append_token failed sub=%s err=%s", subject_id, ex)
            raise _store_error(f"could not append token: {type(ex).__name__}", subject_id)

    async def upsert_with_token(self, subject_id: str, name: str, token: str) -> bool:
        """
        INSERT ... ON CONFLICT (id) DO NOTHING on the user, then the token,
        in one transaction. An existing user keeps its stored name.
        """
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    result = await db.execute(self._insert_user(db, subject_id, name))
                    created = result.rowcount == 1
                    db.add(Token(token_id=token, user_id=subject_id))
        except SQLAlchemyError as ex:
            log.error("upsert_with_token failed sub=%s err=%s", subject_id, ex)
            raise _store_error(f"could not store token: {type(ex).__name__}", subject_id)

        auth_trace("store.token.appended", sub=subject_id, created=created)
        return created


# ------------------------------------------------------------
# In-process store (tests, single-worker dev runs)
# ------------------------------------------------------------
class InMemoryUserStore:
    """
    Dict-backed store; a per-subject asyncio.Lock guards read-modify-write.
    Locks are never evicted, so this is for tests and local development only.
    """

    def __init__(self) -> None:
        self._users: Dict[str, PersistedUser] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, subject_id: str) -> asyncio.Lock:
        return self._locks.setdefault(subject_id, asyncio.Lock())

    def __len__(self) -> int:
        return len(self._users)

    async def find_user(self, subject_id: str) -> Optional[PersistedUser]:
        user = self._users.get(subject_id)
        return user.model_copy(deep=True) if user else None

    async def create_user(self, subject_id: str, name: str, token: str) -> PersistedUser:
        async with self._lock(subject_id):
            if subject_id in self._users:
                raise _store_error("user already exists", subject_id)
            user = PersistedUser(id=subject_id, name=name, tokens=[PersistedToken(token_id=token)])
            self._users[subject_id] = user
            return user.model_copy(deep=True)

    async def append_token(self, subject_id: str, token: str) -> None:
        async with self._lock(subject_id):
            user = self._users.get(subject_id)
            if user is None:
                raise _store_error("user not found", subject_id)
            user.tokens.append(PersistedToken(token_id=token))

    async def upsert_with_token(self, subject_id: str, name: str, token: str) -> bool:
        async with self._lock(subject_id):
            user = self._users.get(subject_id)
            if user is None:
                self._users[subject_id] = PersistedUser(
                    id=subject_id, name=name, tokens=[PersistedToken(token_id=token)]
                )
                return True
            user.tokens.append(PersistedToken(token_id=token))
            return False
