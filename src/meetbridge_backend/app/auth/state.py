# src/meetbridge_backend/app/auth/state.py
"""
State codec for the OAuth callback.

The client builds the `state` parameter itself before sending the user to
the provider: a query-string encoded bag carrying

  redirect : where the client wants to land with the bearer token
  backend  : public base URL of this backend (used for the callback URL)
  site     : which provider to use (optional, defaults to google)

The provider hands `state` back untouched on the callback, so everything
here is pure string handling and never touches the network or the store.
"""
from __future__ import annotations

import re
from typing import Mapping, Optional
from urllib.parse import parse_qs, quote, unquote_plus, urlencode

from pydantic import BaseModel, ConfigDict

from meetbridge_backend.app.core.errors import AuthFlowError, ErrorKind
from meetbridge_backend.app.core.trace import auth_trace

DEFAULT_SITE = "google"

# a "%" that does not start a two-digit hex escape
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class AuthRequest(BaseModel):
    """Raw inputs of the callback request."""
    model_config = ConfigDict(frozen=True)

    code: str
    encoded_state: str


class OAuthDetails(BaseModel):
    """Everything parsed out of the callback request."""
    model_config = ConfigDict(frozen=True)

    code: str
    redirect_url: str
    backend_url: str
    site: str


def _first(fields: Mapping, key: str) -> str:
    value = fields.get(key)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    return value or ""


def trim_backend(backend: str) -> str:
    # only a single trailing slash is dropped; "https://x//" keeps one
    if backend.endswith("/"):
        return backend[:-1]
    return backend


def _unescape(value: str, what: str) -> str:
    if _BAD_ESCAPE.search(value):
        raise AuthFlowError(ErrorKind.MALFORMED_STATE, f"could not url decode {what}")
    try:
        return unquote_plus(value, errors="strict")
    except UnicodeDecodeError as ex:
        raise AuthFlowError(ErrorKind.MALFORMED_STATE, f"could not url decode {what}: {ex}")


def _parse_query(decoded: str) -> dict:
    if ";" in decoded:
        raise AuthFlowError(ErrorKind.MALFORMED_STATE, "invalid semicolon separator in state")
    for piece in decoded.split("&"):
        _unescape(piece, "state field")
    try:
        return parse_qs(decoded, keep_blank_values=True, errors="strict")
    except (ValueError, UnicodeDecodeError) as ex:
        raise AuthFlowError(ErrorKind.MALFORMED_STATE, f"could not parse decoded state: {ex}")


def parse_auth_request(fields: Mapping) -> AuthRequest:
    """Pull `code` and `state` out of the form/query fields."""
    code = _first(fields, "code")
    if not code:
        raise AuthFlowError(ErrorKind.MISSING_CODE, "code is empty")

    state = _first(fields, "state")
    if not state:
        raise AuthFlowError(ErrorKind.MISSING_STATE, "state is empty")

    return AuthRequest(code=code, encoded_state=state)


def decode_state(req: AuthRequest, default_site: str = DEFAULT_SITE) -> OAuthDetails:
    decoded = _unescape(req.encoded_state, "state")
    parsed = _parse_query(decoded)

    redirect = _first(parsed, "redirect")
    if not redirect:
        raise AuthFlowError(ErrorKind.MISSING_REDIRECT, "redirect URL is empty")

    backend = _first(parsed, "backend")
    if not backend:
        raise AuthFlowError(ErrorKind.MISSING_BACKEND, "backend URL is empty")

    backend = trim_backend(backend)

    site = _first(parsed, "site") or default_site or DEFAULT_SITE

    details = OAuthDetails(
        code=req.code,
        redirect_url=redirect,
        backend_url=backend,
        site=site,
    )
    auth_trace("oauth.state.decoded", redirect=redirect, backend=backend, site=site)
    return details


def parse_state(fields: Mapping, default_site: str = DEFAULT_SITE) -> OAuthDetails:
    """Validate the callback fields and decode the state blob in one go."""
    return decode_state(parse_auth_request(fields), default_site=default_site)


def encode_state(redirect: str, backend: str, site: Optional[str] = None) -> str:
    """
    Build a state blob the way clients do: query-encode the fields, then
    percent-encode the result once more so it survives as a single value.
    """
    params = {"redirect": redirect, "backend": backend}
    if site:
        params["site"] = site
    return quote(urlencode(params), safe="")
