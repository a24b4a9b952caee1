"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from guildmark.config import get_settings
from guildmark.database import get_session
from guildmark.db.models import AchievementTemplate
from guildmark.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: the process is up."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe.

    The record store must answer and have its schema migrated. Redis only
    carries unlock notifications, so a missing client is reported as
    ``disabled`` and does not fail readiness.
    """
    checks: dict[str, object] = {}

    try:
        templates = await db.scalar(
            select(func.count()).select_from(AchievementTemplate).where(AchievementTemplate.is_visible.is_(True))
        )
        checks["store"] = "ok"
        checks["visible_templates"] = templates or 0
    except Exception as exc:
        checks["store"] = f"error: {exc}"

    redis = get_redis()
    if redis is None:
        checks["notifications"] = "disabled"
    else:
        try:
            await redis.ping()
            checks["notifications"] = "ok"
        except Exception as exc:
            checks["notifications"] = f"error: {exc}"

    ready = checks["store"] == "ok" and checks["notifications"] in ("ok", "disabled")
    return {"status": "ready" if ready else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "service": "guildmark",
        "version": settings.app_version,
        "environment": settings.environment,
    }
