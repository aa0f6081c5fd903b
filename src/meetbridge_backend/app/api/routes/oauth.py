# src/meetbridge_backend/app/api/routes/oauth.py
from __future__ import annotations

import html
import json
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from meetbridge_backend.app.auth.callback import PLATFORMS, CallbackResult, OAuthCallbackHandler
from meetbridge_backend.app.auth.providers import authorization_url, callback_url, resolve_provider
from meetbridge_backend.app.auth.state import encode_state, trim_backend
from meetbridge_backend.app.core.errors import AuthFlowError, ErrorKind
from meetbridge_backend.app.core.trace import auth_trace

router = APIRouter(tags=["oauth"])


def get_callback_handler(request: Request) -> OAuthCallbackHandler:
    return request.app.state.oauth_handler


def _check_platform(platform: str) -> None:
    if platform not in PLATFORMS:
        raise HTTPException(status_code=404, detail=f"unknown platform: {platform}")


async def _form_fields(request: Request) -> Dict[str, str]:
    """
    Query string first, then the form body on POST; body values win,
    matching how form values are usually merged.
    """
    fields: Dict[str, str] = {}
    for k, v in request.query_params.multi_items():
        fields.setdefault(k, v)
    if request.method == "POST":
        try:
            form = await request.form()
        except Exception as ex:
            raise AuthFlowError(ErrorKind.MALFORMED_REQUEST, f"could not parse form request: {ex}")
        for k, v in form.multi_items():
            if isinstance(v, str):
                fields[k] = v
    return fields


def _with_token(redirect_url: str, token: str) -> str:
    parts = urlsplit(redirect_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("token", token))
    return urlunsplit(parts._replace(query=urlencode(query)))


_TOKEN_PAGE = """<!doctype html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Signed in</title>
  </head>
  <body>
    <p>Signed in. You can return to the app.</p>
    <a id="open" href="{link}">Open {scheme}</a>
    <script>
      window.location.href = {link_js};
    </script>
  </body>
</html>
"""


def _token_page(result: CallbackResult) -> str:
    """Page for desktop/mobile: hands the token to the app through its URL scheme."""
    link = _with_token(result.redirect_url, result.bearer_token)
    scheme = urlsplit(result.redirect_url).scheme or "app"
    return _TOKEN_PAGE.format(
        link=html.escape(link, quote=True),
        scheme=html.escape(scheme),
        link_js=json.dumps(link).replace("</", "<\\/"),
    )


def _render(platform: str, result: CallbackResult) -> Response:
    if platform == "web":
        return RedirectResponse(_with_token(result.redirect_url, result.bearer_token), status_code=302)
    return HTMLResponse(_token_page(result), headers={"Cache-Control": "no-store"})


# ------------------------
# /oauth/{platform} (provider callback)
# ------------------------
@router.api_route("/oauth/{platform}", methods=["GET", "POST"])
async def oauth_callback(
    platform: str,
    request: Request,
    handler: OAuthCallbackHandler = Depends(get_callback_handler),
):
    _check_platform(platform)
    fields = await _form_fields(request)
    result = await handler.handle(fields, platform)
    return _render(platform, result)


# ------------------------
# /oauth/login/{platform} (send the user to the provider)
# ------------------------
@router.get("/oauth/login/{platform}")
async def oauth_login(
    platform: str,
    redirect: str,
    backend: str,
    site: Optional[str] = None,
    handler: OAuthCallbackHandler = Depends(get_callback_handler),
):
    _check_platform(platform)
    if not redirect:
        raise AuthFlowError(ErrorKind.MISSING_REDIRECT, "redirect URL is empty")
    if not backend:
        raise AuthFlowError(ErrorKind.MISSING_BACKEND, "backend URL is empty")

    chosen = site or handler.settings.default_site
    config, _ = resolve_provider(chosen, callback_url(trim_backend(backend), platform), handler.settings)
    state = encode_state(redirect, backend, chosen)

    auth_trace("oauth.login.start", platform=platform, site=chosen, redirect_uri=config.redirect_uri)
    return RedirectResponse(authorization_url(config, state), status_code=302)
