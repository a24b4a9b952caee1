"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from guildmark.achievements.reconciliation import ReconciliationEngine
from guildmark.achievements.store import AchievementStore, SqlAchievementStore
from guildmark.config import Settings, get_settings
from guildmark.database import get_session
from guildmark.redis_client import get_redis as _get_redis


async def get_store(db: AsyncSession = Depends(get_session)) -> AchievementStore:
    """Store adapter bound to the request's database session."""
    return SqlAchievementStore(db)


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (or None) as a FastAPI dependency."""
    yield _get_redis()


async def get_engine(
    store: AchievementStore = Depends(get_store),
    redis: object = Depends(get_redis_dep),
    settings: Settings = Depends(get_settings),
) -> ReconciliationEngine:
    return ReconciliationEngine(store, redis, settings)
