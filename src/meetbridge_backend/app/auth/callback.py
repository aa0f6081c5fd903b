# src/meetbridge_backend/app/auth/callback.py
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, NamedTuple, Optional

import httpx

from meetbridge_backend.app.auth.identity import IdentityClaims, exchange_identity
from meetbridge_backend.app.auth.policy import AllowList, enforce_policy
from meetbridge_backend.app.auth.providers import ProviderConfig, callback_url, resolve_provider
from meetbridge_backend.app.auth.state import OAuthDetails, parse_state
from meetbridge_backend.app.auth.tokens import TokenIssuer
from meetbridge_backend.app.core.config import Settings
from meetbridge_backend.app.core.errors import AuthFlowError, ErrorCategory
from meetbridge_backend.app.core.trace import audit, auth_trace

PLATFORMS = ("web", "desktop", "mobile")


class CallbackResult(NamedTuple):
    redirect_url: str
    bearer_token: str


class OAuthCallbackHandler:
    """
    Runs one OAuth callback end to end:

      state codec -> provider resolver -> identity exchange
                  -> policy gate -> token issue / user upsert

    Every collaborator is passed in; the handler keeps no per-request state,
    so one instance serves all concurrent requests.
    """

    def __init__(
        self,
        settings: Settings,
        allow_list: AllowList,
        issuer: TokenIssuer,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.allow_list = allow_list
        self.issuer = issuer
        self.http_client = http_client

    async def handle(self, fields: Mapping, platform: str) -> CallbackResult:
        details: Optional[OAuthDetails] = None
        config: Optional[ProviderConfig] = None
        claims: Optional[IdentityClaims] = None
        try:
            details = parse_state(fields, default_site=self.settings.default_site)

            config, provider_id = resolve_provider(
                details.site,
                callback_url(details.backend_url, platform),
                self.settings,
            )

            claims = await exchange_identity(
                config,
                details,
                provider_id,
                settings=self.settings,
                client=self.http_client,
            )

            await enforce_policy(claims, self.allow_list)

            token = await self.issuer.issue(claims.subject_id, claims.display_name)

        except AuthFlowError as err:
            self._audit_rejection(err, platform, details, config, claims)
            raise

        auth_trace("oauth.callback.ok", platform=platform, sub=claims.subject_id,
                   redirect=details.redirect_url)
        return CallbackResult(redirect_url=details.redirect_url, bearer_token=token)

    def _audit_rejection(
        self,
        err: AuthFlowError,
        platform: str,
        details: Optional[OAuthDetails],
        config: Optional[ProviderConfig],
        claims: Optional[IdentityClaims],
    ) -> None:
        ctx: Dict[str, Any] = {"platform": platform, "kind": err.kind.value}
        if claims is not None:
            ctx["email"] = claims.email
            ctx["sub"] = claims.subject_id
        if details is not None:
            ctx["redirect"] = details.redirect_url
            ctx["backend"] = details.backend_url
            ctx["site"] = details.site
        if config is not None:
            # client_secret is a SecretStr and never reaches the line
            ctx["client_id"] = config.client_id
            ctx["redirect_uri"] = config.redirect_uri
        for k, v in err.context.items():
            ctx.setdefault(k, v)

        level = logging.WARNING if err.category in (ErrorCategory.INPUT, ErrorCategory.POLICY) else logging.ERROR
        audit("oauth.callback.rejected", level=level, msg=repr(err.message), **ctx)
