# src/meetbridge_backend/app/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

# Load .env before settings are read
load_dotenv()

from meetbridge_backend.app.core.logging import setup_logging
setup_logging()

from meetbridge_backend.app.api.routes.oauth import router as oauth_router
from meetbridge_backend.app.auth.callback import OAuthCallbackHandler
from meetbridge_backend.app.auth.policy import build_allow_list
from meetbridge_backend.app.auth.tokens import TokenIssuer
from meetbridge_backend.app.core.config import Settings, load_settings
from meetbridge_backend.app.core.errors import AuthFlowError
from meetbridge_backend.app.db.init_db import init_models
from meetbridge_backend.app.db.session import make_engine, make_sessionmaker, test_connection
from meetbridge_backend.app.services.users import SqlUserStore

log = logging.getLogger("meetbridge.app")


def create_app(
    settings: Optional[Settings] = None,
    handler: Optional[OAuthCallbackHandler] = None,
) -> FastAPI:
    """
    Build the API. With `handler` given (tests) nothing is wired at startup;
    otherwise the lifespan opens the database, the provider HTTP client and
    builds the callback handler from `settings`.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if handler is not None:
            app.state.oauth_handler = handler
            yield
            return

        cfg = settings or load_settings()
        engine = make_engine(cfg)
        try:
            await init_models(engine)
            await test_connection(engine)
            sessionmaker = make_sessionmaker(engine)

            async with httpx.AsyncClient(timeout=cfg.provider_timeout_sec) as client:
                app.state.oauth_handler = OAuthCallbackHandler(
                    settings=cfg,
                    allow_list=build_allow_list(cfg, sessionmaker),
                    issuer=TokenIssuer(SqlUserStore(sessionmaker)),
                    http_client=client,
                )
                log.info("oauth handler ready default_site=%s allow_list=%s",
                         cfg.default_site, cfg.allow_list_mode)
                yield
        finally:
            await engine.dispose()

    app = FastAPI(title="MeetBridge OAuth API", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(AuthFlowError)
    async def _auth_flow_error(_: Request, err: AuthFlowError):
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    # Health check (open)
    @app.get("/healthz")
    def health():
        return {"status": "ok"}

    app.include_router(oauth_router)
    return app


app = create_app()
