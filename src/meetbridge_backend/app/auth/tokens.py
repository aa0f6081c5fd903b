# src/meetbridge_backend/app/auth/tokens.py
from __future__ import annotations

import uuid
from typing import Callable

from meetbridge_backend.app.core.errors import AuthFlowError, ErrorKind
from meetbridge_backend.app.core.trace import auth_trace
from meetbridge_backend.app.services.users import UserStore

TokenFactory = Callable[[], str]


def generate_opaque_token() -> str:
    """128-bit random bearer token in canonical UUID form."""
    return str(uuid.uuid4())


class TokenIssuer:
    """
    Mints an opaque token and binds it to the user with `subject_id`,
    creating the user on first sight. Nothing is written if minting fails.
    """

    def __init__(self, store: UserStore, token_factory: TokenFactory = generate_opaque_token):
        self._store = store
        self._token_factory = token_factory

    def _mint(self, subject_id: str) -> str:
        try:
            token = self._token_factory()
        except Exception as ex:
            raise AuthFlowError(
                ErrorKind.TOKEN_GENERATION_FAILED,
                f"could not generate bearer token: {ex}",
                {"sub": subject_id},
            ) from ex
        if not token:
            raise AuthFlowError(
                ErrorKind.TOKEN_GENERATION_FAILED,
                "token generator returned an empty token",
                {"sub": subject_id},
            )
        return token

    async def issue(self, subject_id: str, display_name: str) -> str:
        token = self._mint(subject_id)
        created = await self._store.upsert_with_token(subject_id, display_name, token)
        auth_trace("oauth.token.issued", sub=subject_id, created=created, token=token)
        return token
