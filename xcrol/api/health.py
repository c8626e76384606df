import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.database import get_db
from xcrol.oauth2.models import OAuthClient, OAuthUserAuthorization

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_VERSION = "0.1.0"


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    apps = (await db.execute(select(func.count(OAuthClient.id)))).scalar() or 0
    connections = (await db.execute(select(func.count(OAuthUserAuthorization.id)))).scalar() or 0

    return {
        "status": "healthy",
        "version": _VERSION,
        "apps_count": apps,
        "connections_count": connections,
    }


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Readiness probe: verifies DB connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "ready", "database": "connected"}
    except Exception:
        logger.exception("Readiness check failed: database unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "database": "unavailable"},
        )
