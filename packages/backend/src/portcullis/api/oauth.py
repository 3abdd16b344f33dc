"""Federated login routes — /auth/{provider} and its callback.

Learn: The browser makes two trips:
1. GET /auth/google → 302 to Google's consent page (Authlib stores the
   OAuth state in the session)
2. GET /auth/google/callback?code=... → exchange the code, normalize the
   user info into an IdentityAssertion, reconcile it to a local user

Provider failures (metadata unreachable, user clicked "deny", state
mismatch, bad user info) land back on the login page with a flash
message. A reconciliation that can't create the user (e.g. the
provider's email belongs to an existing local account) re-presents the
signup form prefilled with what the provider sent, and no session is
established.
"""

import structlog
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.api.sessions import redirect
from portcullis.auth.dependencies import (
    get_auth_context,
    get_providers,
    get_settings,
    redirect_if_authenticated,
)
from portcullis.auth.providers import ProviderIntegration, ProviderRegistry
from portcullis.auth.session import AuthContext, flash
from portcullis.config import Settings
from portcullis.db.engine import get_db
from portcullis.events.store import EventStore, request_metadata, user_stream
from portcullis.events.types import LOGIN_FAILED, SESSION_STARTED
from portcullis.schemas.auth import SignupForm
from portcullis.services.credential_store import ValidationFailure
from portcullis.services.federation import FederatedIdentityReconciler

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


def get_integration(
    provider: str,
    registry: ProviderRegistry = Depends(get_providers),
) -> ProviderIntegration:
    integration = registry.get(provider)
    if integration is None:
        raise HTTPException(status_code=404, detail="Unknown identity provider")
    return integration


@router.get("/{provider}")
async def begin(
    request: Request,
    integration: ProviderIntegration = Depends(get_integration),
    auth: AuthContext = Depends(redirect_if_authenticated),
    config: Settings = Depends(get_settings),
):
    """Send the browser to the provider's authorization page."""
    redirect_uri = request.url_for("oauth_callback", provider=integration.name)
    try:
        return await integration.authorize_redirect(request, str(redirect_uri))
    except OAuthError as e:
        logger.warning(
            "portcullis.authorize_redirect_failed",
            provider=integration.name,
            error=e.error,
        )
        flash(request.session, f"Could not sign in with {integration.name}")
        return redirect(config.login_path)


@router.get("/{provider}/callback", name="oauth_callback")
async def callback(
    request: Request,
    integration: ProviderIntegration = Depends(get_integration),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    config: Settings = Depends(get_settings),
):
    """Finish the provider round-trip and log the reconciled user in."""
    events = EventStore(db)
    try:
        assertion = await integration.fetch_assertion(request)
    except OAuthError as e:
        logger.info(
            "portcullis.login_failed",
            method=integration.name,
            error=e.error,
        )
        await events.append(
            stream_id=f"login:{integration.name}",
            event_type=LOGIN_FAILED,
            data={"method": integration.name, "error": e.error},
            metadata=request_metadata(request),
        )
        await db.commit()
        flash(request.session, f"Could not sign in with {integration.name}")
        return redirect(config.login_path)

    try:
        user = await FederatedIdentityReconciler(db, auth.store).reconcile(assertion)
    except ValidationFailure as failure:
        form = SignupForm(
            errors=failure.errors,
            username=assertion.derived_username(),
            email=assertion.email,
            provider=assertion.provider,
        )
        return JSONResponse(status_code=422, content=form.model_dump())

    auth.set_user(user.id)
    await events.append(
        stream_id=user_stream(user.id),
        event_type=SESSION_STARTED,
        data={"method": integration.name},
        metadata=request_metadata(request),
    )
    await db.commit()
    logger.info(
        "portcullis.login_succeeded", method=integration.name, user_id=str(user.id)
    )
    return redirect(config.landing_path)
