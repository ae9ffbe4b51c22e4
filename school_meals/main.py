from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.gzip import GZipMiddleware

from .config import Settings, get_settings
from .db import create_session_factory
from .errors import install_error_handlers
from .observability import RequestContextMiddleware, configure_logging, init_sentry
from .providers.supabase import SupabaseAuthClient
from .routes import auth, health, menu, selections
from .startup import validate_settings

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("X-Frame-Options", "DENY")
        return response


def create_app(
    settings: Optional[Settings] = None,
    *,
    auth_client: Optional[SupabaseAuthClient] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
    """Build the API with its collaborators.

    The auth provider client and session factory are built from settings
    unless passed in; either way they live on ``app.state`` and reach the
    handlers through dependencies.
    """
    s = settings or get_settings()
    configure_logging(json_logs=s.log_json, level=s.log_level)
    init_sentry(s)
    validate_settings(s)

    engine = None
    if session_factory is None:
        engine, session_factory = create_session_factory(s.database_url)
    owns_auth_client = auth_client is None
    if auth_client is None:
        auth_client = SupabaseAuthClient(
            s.supabase_url,
            s.supabase_anon_key,
            timeout=s.auth_timeout_seconds,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_auth_client:
            await auth_client.aclose()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title=s.app_name, lifespan=lifespan)
    app.state.settings = s
    app.state.auth_client = auth_client
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=s.cors_allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(RequestContextMiddleware)

    install_error_handlers(app)

    @app.get("/", include_in_schema=False)
    def root():
        return {"message": "School meal selection API is running."}

    prefix = s.api_prefix.rstrip("/")
    app.include_router(health.router, prefix=prefix)
    app.include_router(auth.router, prefix=prefix)
    app.include_router(menu.router, prefix=prefix)
    app.include_router(selections.router, prefix=prefix)

    if s.metrics_enabled:
        Instrumentator().instrument(app).expose(app, include_in_schema=False)

    logger.info("API configured env=%s prefix=%s", s.environment, prefix)
    return app


def __getattr__(name: str):
    # ``uvicorn school_meals.main:app`` builds the app on first access so that
    # importing create_app does not require a configured environment.
    if name == "app":
        application = create_app()
        globals()["app"] = application
        return application
    raise AttributeError(name)


if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("school_meals.main:app", host="0.0.0.0", port=port, reload=False)
