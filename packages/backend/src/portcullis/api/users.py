"""Local signup routes.

Learn: A successful signup logs the new user straight in. A rejected
one re-presents the signup form (422) with every field error at once;
no session is established.
"""

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.api.sessions import redirect
from portcullis.auth.dependencies import get_settings, redirect_if_authenticated
from portcullis.auth.session import AuthContext
from portcullis.config import Settings
from portcullis.db.engine import get_db
from portcullis.events.store import EventStore, request_metadata, user_stream
from portcullis.events.types import SESSION_STARTED
from portcullis.schemas.auth import SignupForm, SignupRequest
from portcullis.services.credential_store import ValidationFailure
from portcullis.services.registration import RegistrationService

logger = structlog.get_logger()

router = APIRouter()


@router.get("/signup", response_model=SignupForm)
async def signup_form(auth: AuthContext = Depends(redirect_if_authenticated)):
    return SignupForm()


@router.post("/signup")
async def signup(
    body: SignupRequest,
    request: Request,
    auth: AuthContext = Depends(redirect_if_authenticated),
    db: AsyncSession = Depends(get_db),
    config: Settings = Depends(get_settings),
):
    """Create a local account and log it in."""
    svc = RegistrationService(db, auth.store)
    try:
        user = await svc.register(
            username=body.username,
            email=body.email,
            password=body.password,
            password_confirmation=body.password_confirmation,
        )
    except ValidationFailure as failure:
        logger.info("portcullis.signup_rejected", fields=sorted(failure.errors))
        form = SignupForm(
            errors=failure.errors, username=body.username, email=body.email
        )
        return JSONResponse(status_code=422, content=form.model_dump())

    auth.set_user(user.id)
    await EventStore(db).append(
        stream_id=user_stream(user.id),
        event_type=SESSION_STARTED,
        data={"method": "signup"},
        metadata=request_metadata(request),
    )
    await db.commit()
    return redirect(config.landing_path)
