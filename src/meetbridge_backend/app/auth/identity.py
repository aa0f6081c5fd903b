# src/meetbridge_backend/app/auth/identity.py  (code -> token -> identity)
from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
import jwt
from jwt import PyJWKClient
from pydantic import BaseModel, ConfigDict, ValidationError

from meetbridge_backend.app.auth.providers import GITHUB, GOOGLE, ProviderConfig
from meetbridge_backend.app.auth.state import OAuthDetails
from meetbridge_backend.app.core.config import Settings
from meetbridge_backend.app.core.errors import AuthFlowError, ErrorKind
from meetbridge_backend.app.core.trace import auth_trace

GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")


class IdentityClaims(BaseModel):
    """Normalized identity as reported by the provider. Used once per request."""
    model_config = ConfigDict(frozen=True)

    subject_id: str
    display_name: str = ""
    email: str = ""
    # "true"/"false" strings from older tokens are parsed, not truth-tested
    email_verified: bool = False


def _fail(msg: str, provider_id: str, **ctx: Any) -> AuthFlowError:
    auth_trace("oauth.exchange.failed", provider=provider_id, err=msg)
    return AuthFlowError(ErrorKind.IDENTITY_EXCHANGE_FAILED, msg, {"provider": provider_id, **ctx})


# Cache JWKS client per key set URL
@lru_cache(maxsize=4)
def _jwks_client(jwks_uri: str, timeout: float) -> PyJWKClient:
    return PyJWKClient(jwks_uri, timeout=timeout)


def _json(resp: httpx.Response, what: str, provider_id: str) -> Any:
    if resp.status_code // 100 != 2:
        raise _fail(f"{what} failed: {resp.status_code}", provider_id, status=resp.status_code)
    try:
        return resp.json()
    except ValueError as ex:
        raise _fail(f"{what} returned invalid JSON: {ex}", provider_id)


async def _exchange_code(client: httpx.AsyncClient, config: ProviderConfig, code: str,
                         provider_id: str, timeout: float) -> Dict[str, Any]:
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": config.client_id,
        "client_secret": config.client_secret.get_secret_value(),
        "redirect_uri": config.redirect_uri,
    }
    resp = await client.post(
        config.token_url,
        data=data,
        headers={"Accept": "application/json"},
        timeout=timeout,
    )
    tok = _json(resp, "token exchange", provider_id)
    if not isinstance(tok, dict) or not tok.get("access_token"):
        raise _fail("no access_token in token response", provider_id)
    return tok


def verify_google_id_token(id_token: str, config: ProviderConfig, settings: Settings) -> Dict[str, Any]:
    """
    Verify a Google ID token (RS256) against Google's JWKS.
    In TEST_MODE the signature is not checked, only decoded.
    """
    if settings.test_mode:
        return jwt.decode(id_token, options={"verify_signature": False, "verify_aud": False})

    jwks = _jwks_client(settings.google_jwks_uri, settings.provider_timeout_sec)
    key = jwks.get_signing_key_from_jwt(id_token).key
    claims = jwt.decode(
        id_token,
        key=key,
        algorithms=["RS256"],
        audience=config.client_id,
        options={"require": ["exp", "iss", "aud", "sub"]},
        leeway=120,
    )
    if claims.get("iss") not in GOOGLE_ISSUERS:
        raise jwt.InvalidIssuerError(f"iss not Google: {claims.get('iss')}")
    return claims


async def _google_identity(client: httpx.AsyncClient, config: ProviderConfig, tok: Dict[str, Any],
                           settings: Settings) -> IdentityClaims:
    id_token = tok.get("id_token")
    if id_token:
        try:
            claims = verify_google_id_token(id_token, config, settings)
        except jwt.PyJWTError as ex:
            raise _fail(f"invalid google id_token: {ex}", GOOGLE)
        return IdentityClaims(
            subject_id=str(claims.get("sub") or ""),
            display_name=claims.get("given_name") or claims.get("name") or "",
            email=claims.get("email") or "",
            email_verified=claims.get("email_verified") or False,
        )

    # no id_token: fall back to the userinfo endpoint
    resp = await client.get(
        config.userinfo_url,
        headers={"Authorization": f"Bearer {tok['access_token']}"},
        timeout=settings.provider_timeout_sec,
    )
    info = _json(resp, "userinfo request", GOOGLE)
    if not isinstance(info, dict):
        raise _fail("userinfo response is not an object", GOOGLE)
    return IdentityClaims(
        subject_id=str(info.get("id") or ""),
        display_name=info.get("given_name") or info.get("name") or "",
        email=info.get("email") or "",
        email_verified=info.get("verified_email") or False,
    )


def _primary_email(emails: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for entry in emails:
        if isinstance(entry, dict) and entry.get("primary"):
            return entry
    return None


async def _github_identity(client: httpx.AsyncClient, config: ProviderConfig, tok: Dict[str, Any],
                           settings: Settings) -> IdentityClaims:
    headers = {
        "Authorization": f"Bearer {tok['access_token']}",
        "Accept": "application/vnd.github+json",
    }
    user = _json(
        await client.get(config.userinfo_url, headers=headers, timeout=settings.provider_timeout_sec),
        "user request", GITHUB,
    )
    if not isinstance(user, dict):
        raise _fail("user response is not an object", GITHUB)
    emails = _json(
        await client.get(config.emails_url, headers=headers, timeout=settings.provider_timeout_sec),
        "emails request", GITHUB,
    )
    primary = _primary_email(emails if isinstance(emails, list) else []) or {}
    return IdentityClaims(
        subject_id=str(user.get("id") or ""),
        display_name=user.get("name") or user.get("login") or "",
        email=primary.get("email") or "",
        email_verified=primary.get("verified") or False,
    )


async def exchange_identity(
    config: ProviderConfig,
    details: OAuthDetails,
    provider_id: str,
    *,
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> IdentityClaims:
    """
    Trade the authorization code for the caller's identity.
    Any transport, status or decoding problem is IDENTITY_EXCHANGE_FAILED;
    there is no retry here.
    """
    own = client or httpx.AsyncClient(timeout=settings.provider_timeout_sec)
    try:
        auth_trace("oauth.exchange.begin", provider=provider_id, redirect_uri=config.redirect_uri)
        tok = await _exchange_code(own, config, details.code, provider_id, settings.provider_timeout_sec)
        if provider_id == GOOGLE:
            claims = await _google_identity(own, config, tok, settings)
        elif provider_id == GITHUB:
            claims = await _github_identity(own, config, tok, settings)
        else:
            raise _fail(f"no identity mapping for provider {provider_id}", provider_id)
    except httpx.HTTPError as ex:
        raise _fail(f"provider request failed: {type(ex).__name__}: {ex}", provider_id)
    except ValidationError as ex:
        raise _fail(f"provider returned unusable identity claims: {ex.error_count()} error(s)",
                    provider_id, fields=[".".join(map(str, e["loc"])) for e in ex.errors()])
    finally:
        if client is None:
            await own.aclose()

    if not claims.subject_id:
        raise _fail("provider returned no subject id", provider_id)

    auth_trace("oauth.exchange.ok", provider=provider_id, sub=claims.subject_id,
               email_verified=claims.email_verified)
    return claims
