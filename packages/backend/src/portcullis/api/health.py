"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and the
user database is reachable. Open — it sits outside the gate.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis import __version__
from portcullis.db.engine import get_db

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Check server health and database connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {
        "status": status,
        "providers": request.app.state.providers.names(),
        **checks,
    }
