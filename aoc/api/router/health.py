from datetime import datetime
from typing import Dict

from fastapi import APIRouter, Request
from sqlalchemy import text

from aoc.infra.config.redis import get_redis
from aoc.infra.config.settings import settings
from aoc.infra.database import get_database_manager

router = APIRouter()


async def check_redis_health() -> Dict[str, str]:
    """Check Redis connection health."""
    try:
        redis_client = await get_redis()
        await redis_client.ping()
        return {"status": "healthy", "message": "Connected"}
    except Exception as e:
        return {"status": "unhealthy", "message": f"Connection failed: {str(e)}"}


async def check_database_health() -> Dict[str, str]:
    """Check SQL database connection health."""
    try:
        engine = await get_database_manager().connect()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "message": "Connected"}
    except Exception as e:
        return {"status": "unhealthy", "message": f"Connection failed: {str(e)}"}


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.
    Reports the reservation ledger (Redis) and the user database.
    """
    services = {
        "redis": (await check_redis_health())["status"],
        "database": (await check_database_health())["status"],
        "api": "healthy"
    }

    overall_status = "healthy"
    if any(status == "unhealthy" for status in services.values()):
        overall_status = "degraded"

    return {
        "status": overall_status,
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "services": services,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }
