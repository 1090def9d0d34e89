"""
Campus Eats — Health endpoint
"""
import asyncio
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from campus_eats.core.config import get_settings
from campus_eats.core.notifier import get_redis
from campus_eats.db.database import engine

settings = get_settings()
router = APIRouter(tags=["health"])


async def _ping_postgres() -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


@router.get("/health")
async def health_check():
    deps: dict[str, str] = {}
    healthy = True

    try:
        await asyncio.wait_for(_ping_postgres(), timeout=settings.HEALTH_CHECK_TIMEOUT)
        deps["postgres"] = "ok"
    except Exception as e:
        deps["postgres"] = f"error: {str(e)[:100]}"
        healthy = False

    # Redis only carries notifications; orders still work without it
    try:
        await asyncio.wait_for(get_redis().ping(), timeout=settings.HEALTH_CHECK_TIMEOUT)
        deps["redis"] = "ok"
    except Exception as e:
        deps["redis"] = f"error: {str(e)[:100]}"

    return JSONResponse(
        content={"status": "healthy" if healthy else "degraded",
                 "service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION,
                 "dependencies": deps},
        status_code=200 if healthy else 503,
    )
