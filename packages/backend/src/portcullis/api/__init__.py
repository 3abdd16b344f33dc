"""Route aggregation.

build_web_router(config) assembles every router; main.create_app mounts it.

Learn: The gate is applied at the include_router level using FastAPI's
dependencies parameter. This protects every route in a router without
touching individual handlers. Health, login, signup and the provider
round-trip are open; everything else requires a session.

The login and landing paths come from the app's Settings, so the
routers that own them are built per app rather than at import time.
"""

from fastapi import APIRouter, Depends

from portcullis.api import home, sessions
from portcullis.api.health import router as health_router
from portcullis.api.oauth import router as oauth_router
from portcullis.api.users import router as users_router
from portcullis.auth.dependencies import require_user
from portcullis.config import Settings

# All protected routers require a logged-in session
_auth = [Depends(require_user)]


def build_web_router(config: Settings) -> APIRouter:
    web_router = APIRouter()

    # Open routes, no session required
    web_router.include_router(health_router, tags=["health"])
    web_router.include_router(sessions.build_router(config), tags=["sessions"])
    web_router.include_router(users_router, tags=["users"])
    web_router.include_router(oauth_router, tags=["oauth"])

    # Protected routes: unauthenticated requests are redirected to login
    web_router.include_router(
        home.build_router(config), tags=["home"], dependencies=_auth
    )
    return web_router
