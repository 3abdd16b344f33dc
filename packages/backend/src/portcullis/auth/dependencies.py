"""FastAPI auth dependencies — the access gate.

Learn: These are used as Depends() in route handlers and at the
include_router level. The gate has two states, Unauthenticated (the
initial state for any new client) and Authenticated, and two guards:

1. require_user — protected resources. Unauthenticated → redirect to login.
2. redirect_if_authenticated — login/signup entry points.
   Authenticated → redirect to the landing page, so nobody logs in twice.

A guard can't return a response from inside a dependency, so it raises a
GateRedirect and the handler installed in main.py turns that into a
303 See Other.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.auth.providers import ProviderRegistry
from portcullis.auth.session import AuthContext
from portcullis.config import Settings
from portcullis.db.engine import get_db
from portcullis.db.models import User
from portcullis.services.credential_store import CredentialStore


class GateRedirect(Exception):
    """Raised by a guard to send the client elsewhere."""

    def __init__(self, location: str):
        super().__init__(location)
        self.location = location


class LoginRequired(GateRedirect):
    """Unauthenticated request for a protected resource."""


class AlreadyAuthenticated(GateRedirect):
    """Authenticated request for a login entry point."""


def get_settings(request: Request) -> Settings:
    """The settings the app was built with (see main.create_app)."""
    return request.app.state.settings


def get_store(db: AsyncSession = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db)


def get_auth_context(
    request: Request,
    store: CredentialStore = Depends(get_store),
) -> AuthContext:
    """The request's AuthContext, created on first use.

    Learn: FastAPI already caches a dependency within one request, but
    stashing the context on request.state also makes it reachable from
    exception handlers and middleware-adjacent code for the same request.
    """
    ctx = getattr(request.state, "auth", None)
    if ctx is None:
        ctx = AuthContext(request.session, store)
        request.state.auth = ctx
    return ctx


async def require_user(
    auth: AuthContext = Depends(get_auth_context),
    config: Settings = Depends(get_settings),
) -> User:
    """The current user; unauthenticated requests are redirected to login."""
    user = await auth.get_current_user()
    if user is None:
        raise LoginRequired(config.login_path)
    return user


async def redirect_if_authenticated(
    auth: AuthContext = Depends(get_auth_context),
    config: Settings = Depends(get_settings),
) -> AuthContext:
    """Guard for entry points that only make sense while logged out."""
    if await auth.is_authenticated():
        raise AlreadyAuthenticated(config.landing_path)
    return auth


def get_providers(request: Request) -> ProviderRegistry:
    """The identity provider registry built at startup (see main.create_app)."""
    return request.app.state.providers
