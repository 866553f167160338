"""
Health check endpoints.
/health always returns 200; DB connectivity is reported but never fails the check.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxhelper.config import settings
from taxhelper.dependencies import get_session_factory

router = APIRouter(tags=["health"])


async def _database_ok(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    async with session_factory() as session:
        result = await session.execute(text("SELECT 1"))
        return result.scalar() == 1


@router.get("/health")
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Verifies the API is running and tests DB connectivity."""
    db_error = None
    try:
        db_ok = await _database_ok(session_factory)
    except Exception as e:
        db_ok = False
        db_error = str(e)[:200]

    response = {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "database": "connected" if db_ok else "unreachable",
    }
    if db_error:
        response["database_error"] = db_error

    return response


@router.get("/health/ready")
async def readiness_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Readiness check: ready only if the database answers."""
    try:
        return {"ready": await _database_ok(session_factory)}
    except Exception:
        return {"ready": False}
