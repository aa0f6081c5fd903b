# tests/conftest.py
from __future__ import annotations

import os
from typing import Any, Callable, Dict, Optional

import jwt
import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from meetbridge_backend.app.auth.callback import OAuthCallbackHandler
from meetbridge_backend.app.auth.policy import StaticAllowList
from meetbridge_backend.app.auth.tokens import TokenIssuer
from meetbridge_backend.app.core.config import Settings
from meetbridge_backend.app.db.init_db import init_models
from meetbridge_backend.app.db.session import make_engine, make_sessionmaker
from meetbridge_backend.app.main import create_app
from meetbridge_backend.app.services.users import InMemoryUserStore

# ---------- Constants for the mocked providers ----------
GOOGLE_CLIENT_ID = "dummy-client.apps.googleusercontent.com"
GOOGLE_SECRET = "dummy-google-secret"
GITHUB_CLIENT_ID = "dummy-github-client"
GITHUB_SECRET = "dummy-github-secret"

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

ALLOWED = ("tester@example.com", "*@corp.example")


# ---------- Pytest controls ----------
def pytest_configure(config: pytest.Config) -> None:
    print("\n=== Environment Summary ===")
    print(f"LOG_LEVEL={os.getenv('LOG_LEVEL')}")
    print(f"AUTH_TRACE={os.getenv('AUTH_TRACE')}")
    print("===========================\n")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# ---------- Settings / collaborators ----------
@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'meetbridge-test.db'}",
        google_client_id=GOOGLE_CLIENT_ID,
        google_client_secret=SecretStr(GOOGLE_SECRET),
        github_client_id=GITHUB_CLIENT_ID,
        github_client_secret=SecretStr(GITHUB_SECRET),
        allow_list_mode="static",
        allowed_emails=ALLOWED,
        test_mode=True,  # id_token signatures are not checked in tests
    )


@pytest.fixture
def memory_store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
async def sql_sessionmaker(settings: Settings):
    engine = make_engine(settings)
    await init_models(engine)
    try:
        yield make_sessionmaker(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def callback_handler(settings: Settings, memory_store: InMemoryUserStore) -> OAuthCallbackHandler:
    return OAuthCallbackHandler(
        settings=settings,
        allow_list=StaticAllowList(settings.allowed_emails),
        issuer=TokenIssuer(memory_store),
    )


@pytest.fixture
def client(callback_handler: OAuthCallbackHandler):
    app = create_app(handler=callback_handler)
    with TestClient(app, follow_redirects=False) as c:
        yield c


# ---------- Provider mocks ----------
def make_id_token(claims: Dict[str, Any]) -> str:
    """ID token signed with a throwaway key; TEST_MODE skips signature checks."""
    return jwt.encode(claims, "test-signing-key-not-used-for-verification", algorithm="HS256")


@pytest.fixture
def mock_google(httpx_mock) -> Callable[..., None]:
    """
    Register a Google token response carrying an id_token for the given identity.
    """
    def _register(
        sub: str = "1234567890",
        email: str = "tester@example.com",
        email_verified: bool = True,
        given_name: Optional[str] = "Tess",
    ) -> None:
        claims: Dict[str, Any] = {
            "iss": "https://accounts.google.com",
            "aud": GOOGLE_CLIENT_ID,
            "sub": sub,
            "email": email,
            "email_verified": email_verified,
        }
        if given_name is not None:
            claims["given_name"] = given_name
        httpx_mock.add_response(
            url=GOOGLE_TOKEN_URL,
            method="POST",
            json={
                "access_token": "ya29.mock",
                "id_token": make_id_token(claims),
                "token_type": "Bearer",
                "expires_in": 3600,
            },
        )

    return _register
