"""The landing resource — the first page behind the gate."""

from fastapi import APIRouter, Depends

from portcullis.auth.dependencies import require_user
from portcullis.config import Settings
from portcullis.db.models import User
from portcullis.schemas.auth import UserRead


async def index(user: User = Depends(require_user)):
    return {"user": UserRead.model_validate(user)}


def build_router(config: Settings) -> APIRouter:
    router = APIRouter()
    router.add_api_route(config.landing_path, index, methods=["GET"])
    return router
