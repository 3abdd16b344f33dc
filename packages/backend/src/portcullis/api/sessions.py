"""Login and logout routes.

Learn: Both outcomes of a login attempt are redirects (303 See Other, so
the browser follows with a GET):
- success → landing page, session bound to the user
- failure → back to the login page, with one generic flash message

GET and POST on the login path sit behind redirect_if_authenticated, so
a client that is already logged in is sent to the landing page before
the authenticator ever runs.

The login path is configurable, so the router is built per app by
build_router(config) instead of being decorated at import time.
"""

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.auth.dependencies import (
    get_auth_context,
    get_providers,
    get_settings,
    redirect_if_authenticated,
)
from portcullis.auth.providers import ProviderRegistry
from portcullis.auth.session import AuthContext, flash, pop_flash
from portcullis.config import Settings
from portcullis.db.engine import get_db
from portcullis.events.store import EventStore, request_metadata, user_stream
from portcullis.events.types import LOGIN_FAILED, SESSION_ENDED, SESSION_STARTED
from portcullis.schemas.auth import LoginForm, LoginRequest
from portcullis.services.local_auth import AuthFailure, LocalAuthenticator

logger = structlog.get_logger()


def redirect(location: str) -> RedirectResponse:
    return RedirectResponse(location, status_code=303)


async def login_form(
    request: Request,
    auth: AuthContext = Depends(redirect_if_authenticated),
    registry: ProviderRegistry = Depends(get_providers),
):
    """The login entry point: pending error message and available providers."""
    return LoginForm(
        error=pop_flash(request.session),
        providers=registry.names(),
    )


async def login(
    body: LoginRequest,
    request: Request,
    auth: AuthContext = Depends(redirect_if_authenticated),
    db: AsyncSession = Depends(get_db),
    config: Settings = Depends(get_settings),
):
    """Username/password login."""
    events = EventStore(db)
    try:
        user = await LocalAuthenticator(auth.store).authenticate(
            body.username, body.password
        )
    except AuthFailure as e:
        flash(request.session, str(e))
        await events.append(
            stream_id=f"login:{body.username[:100]}",
            event_type=LOGIN_FAILED,
            data={"method": "password"},
            metadata=request_metadata(request),
        )
        await db.commit()
        logger.info("portcullis.login_failed", method="password")
        return redirect(config.login_path)

    auth.set_user(user.id)
    await events.append(
        stream_id=user_stream(user.id),
        event_type=SESSION_STARTED,
        data={"method": "password"},
        metadata=request_metadata(request),
    )
    await db.commit()
    logger.info("portcullis.login_succeeded", method="password", user_id=str(user.id))
    return redirect(config.landing_path)


async def logout(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    config: Settings = Depends(get_settings),
):
    """End the session. Logging out twice is harmless."""
    user = await auth.get_current_user()
    auth.clear()
    if user is not None:
        await EventStore(db).append(
            stream_id=user_stream(user.id),
            event_type=SESSION_ENDED,
            data={},
            metadata=request_metadata(request),
        )
        await db.commit()
        logger.info("portcullis.logout", user_id=str(user.id))
    return redirect(config.landing_path)


def build_router(config: Settings) -> APIRouter:
    router = APIRouter()
    router.add_api_route(
        config.login_path, login_form, methods=["GET"], response_model=LoginForm
    )
    router.add_api_route(config.login_path, login, methods=["POST"])
    router.add_api_route("/logout", logout, methods=["POST"])
    return router
