"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The settings it was given and the identity provider registry
(built here, once, from those settings) are hung on app.state; guards
and handlers read them from there, never from the module-level
singleton.

The session cookie comes from Starlette's SessionMiddleware (signed with
itsdangerous). It is the transport for the "user_id" key the auth layer
reads and writes, and for the OAuth state Authlib keeps between the
redirect and the callback.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse
from starlette.middleware.sessions import SessionMiddleware

from portcullis import __version__
from portcullis.api import build_web_router
from portcullis.auth.dependencies import GateRedirect
from portcullis.auth.providers import ProviderRegistry
from portcullis.config import Settings, settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "portcullis.starting",
        version=__version__,
        environment=app.state.settings.environment,
        providers=app.state.providers.names(),
    )

    yield

    logger.info("portcullis.shutdown")

    # Close database engine
    from portcullis.db.engine import engine
    await engine.dispose()


async def gate_redirect_handler(request: Request, exc: GateRedirect):
    """Turn a gate decision into a 303 See Other."""
    logger.debug("portcullis.gate_redirect", location=exc.location)
    return RedirectResponse(exc.location, status_code=303)


def create_app(
    config: Settings = settings,
    providers: ProviderRegistry | None = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Portcullis",
        description="Session authentication: local credentials and federated identity providers",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.providers = providers or ProviderRegistry.from_settings(config.providers)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → Session → handler

    from portcullis.middleware.request_id import RequestIdMiddleware
    from portcullis.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret,
        session_cookie=config.session_cookie,
        max_age=config.session_max_age,
        same_site=config.session_same_site,
        https_only=config.session_https_only,
    )
    app.add_middleware(
        SecurityHeadersMiddleware,
        no_store_prefixes=(config.login_path, "/logout", "/signup", "/auth/"),
    )
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(GateRedirect, gate_redirect_handler)

    app.include_router(build_web_router(config))

    return app


# Default app instance (used by uvicorn: portcullis.main:app)
app = create_app()
