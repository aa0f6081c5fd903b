# src/meetbridge_backend/app/auth/providers.py
from __future__ import annotations

from typing import Dict, FrozenSet, Optional, Tuple
from urllib.parse import urlencode, urlsplit

from pydantic import BaseModel, ConfigDict, SecretStr

from meetbridge_backend.app.core.config import Settings
from meetbridge_backend.app.core.errors import AuthFlowError, ErrorKind
from meetbridge_backend.app.core.trace import auth_trace

GOOGLE = "google"
GITHUB = "github"


class ProviderConfig(BaseModel):
    """
    OAuth client configuration for one provider, bound to the callback URL
    of the current request. Built per request, never persisted.
    """
    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: SecretStr
    scopes: FrozenSet[str]
    auth_url: str
    token_url: str
    redirect_uri: str
    userinfo_url: str
    emails_url: Optional[str] = None


# Static endpoint table; credentials come from Settings.
_ENDPOINTS: Dict[str, Dict[str, object]] = {
    GOOGLE: {
        "scopes": frozenset({"openid", "email", "profile"}),
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
    },
    GITHUB: {
        "scopes": frozenset({"read:user", "user:email"}),
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.com/user",
        "emails_url": "https://api.github.com/user/emails",
    },
}


def supported_sites() -> Tuple[str, ...]:
    return tuple(_ENDPOINTS)


def callback_url(backend_url: str, platform: str) -> str:
    return backend_url + "/oauth/" + platform


def _credentials(site: str, settings: Settings) -> Tuple[str, SecretStr]:
    if site == GOOGLE:
        return settings.google_client_id, settings.google_client_secret
    return settings.github_client_id, settings.github_client_secret


def resolve_provider(site: str, redirect_uri: str, settings: Settings) -> Tuple[ProviderConfig, str]:
    """
    Map a site selector to its OAuth client config.
    Returns (config, provider_id). Pure: reads only static tables and settings.
    """
    endpoints = _ENDPOINTS.get(site)
    if endpoints is None:
        raise AuthFlowError(
            ErrorKind.UNSUPPORTED_PROVIDER,
            f"unsupported oauth provider: {site}",
            {"site": site},
        )

    client_id, client_secret = _credentials(site, settings)
    if not client_id or not client_secret.get_secret_value():
        raise AuthFlowError(
            ErrorKind.PROVIDER_CONFIG_ERROR,
            f"oauth client for {site} is not configured",
            {"site": site},
        )

    parts = urlsplit(redirect_uri)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise AuthFlowError(
            ErrorKind.PROVIDER_CONFIG_ERROR,
            f"invalid callback URL: {redirect_uri}",
            {"site": site, "redirect_uri": redirect_uri},
        )

    config = ProviderConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        **endpoints,
    )
    auth_trace("oauth.provider.resolved", site=site, redirect_uri=redirect_uri)
    return config, site


def authorization_url(config: ProviderConfig, state: str) -> str:
    """Provider consent URL the client is sent to before the callback."""
    params = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "scope": " ".join(sorted(config.scopes)),
        "state": state,
    }
    return f"{config.auth_url}?{urlencode(params)}"
