"""
Exercise Cache Store

Database operations on the exercise_cache table. Every write commits before
returning, and connectivity failures surface as StorageUnavailable.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from aves.core.exceptions import StorageUnavailable
from aves.models.exercise_cache import CachedExercise
from aves.services.cache_keys import user_prefix


logger = logging.getLogger(__name__)


def _storage_guard(func: Callable):
    """Translate database connectivity errors into StorageUnavailable."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error(f"Exercise cache storage error in {func.__name__}: {e}")
            raise StorageUnavailable("Exercise cache storage is unavailable") from e
    return wrapper


@_storage_guard
async def claim_hit(
    db: AsyncSession,
    cache_key: str,
    now: datetime,
) -> Optional[CachedExercise]:
    """
    Record a hit on a live entry and return it.

    Lookup and usage increment are a single UPDATE ... RETURNING, so
    concurrent hits on the same key never lose an increment.

    Args:
        db: Database session.
        cache_key: Derived cache key.
        now: Current time; entries with expires_at <= now are ignored.

    Returns:
        The updated entry, or None on a miss (absent or expired).
    """
    result = await db.execute(
        update(CachedExercise)
        .where(
            CachedExercise.cache_key == cache_key,
            CachedExercise.expires_at > now,
        )
        .values(
            usage_count=CachedExercise.usage_count + 1,
            last_used_at=now,
        )
        .returning(CachedExercise)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    entry = result.scalar_one_or_none()
    await db.commit()
    return entry


@_storage_guard
async def has_live_entry(
    db: AsyncSession,
    cache_key: str,
    now: datetime,
) -> bool:
    """Check for a non-expired entry without touching its usage counters."""
    result = await db.execute(
        select(CachedExercise.id)
        .where(
            CachedExercise.cache_key == cache_key,
            CachedExercise.expires_at > now,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


@_storage_guard
async def upsert_entry(
    db: AsyncSession,
    *,
    cache_key: str,
    exercise_type: str,
    exercise_data: Dict[str, Any],
    user_context_hash: str,
    difficulty: int,
    topics: List[str],
    generation_cost: Decimal,
    generation_time_ms: Optional[int],
    now: datetime,
    expires_at: datetime,
) -> CachedExercise:
    """
    Insert a freshly generated exercise, replacing any row with the same key.

    A conflicting row (expired, or written by a racing request) is
    overwritten and its usage count restarts at 0.
    """
    stmt = pg_insert(CachedExercise).values(
        id=uuid.uuid4(),
        cache_key=cache_key,
        exercise_type=exercise_type,
        exercise_data=exercise_data,
        user_context_hash=user_context_hash,
        difficulty=difficulty,
        topics=topics,
        usage_count=0,
        generation_cost=generation_cost,
        generation_time_ms=generation_time_ms,
        created_at=now,
        last_used_at=now,
        expires_at=expires_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["cache_key"],
        set_={
            "exercise_type": stmt.excluded.exercise_type,
            "exercise_data": stmt.excluded.exercise_data,
            "user_context_hash": stmt.excluded.user_context_hash,
            "difficulty": stmt.excluded.difficulty,
            "topics": stmt.excluded.topics,
            "usage_count": 0,
            "generation_cost": stmt.excluded.generation_cost,
            "generation_time_ms": stmt.excluded.generation_time_ms,
            "created_at": stmt.excluded.created_at,
            "last_used_at": stmt.excluded.last_used_at,
            "expires_at": stmt.excluded.expires_at,
        },
    ).returning(CachedExercise)

    result = await db.execute(stmt, execution_options={"populate_existing": True})
    entry = result.scalar_one()
    await db.commit()
    return entry


@_storage_guard
async def delete_for_user(db: AsyncSession, user_id: str) -> int:
    """
    Delete every entry whose key starts with "{user_id}_".

    LIKE wildcards in the user ID are escaped.

    Returns:
        Number of rows deleted.
    """
    result = await db.execute(
        delete(CachedExercise)
        .where(CachedExercise.cache_key.startswith(user_prefix(user_id), autoescape=True))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0


@_storage_guard
async def delete_expired(db: AsyncSession, now: datetime) -> int:
    """Delete entries whose TTL has elapsed. Returns the number removed."""
    result = await db.execute(
        delete(CachedExercise)
        .where(CachedExercise.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0


@_storage_guard
async def aggregate_totals(db: AsyncSession, now: datetime) -> Dict[str, Any]:
    """
    Scan the cache for overall counters.

    Returns:
        Dict with total_entries, active_entries, total_usage, total_cost and
        avg_generation_time_ms (None when no timings were recorded).
    """
    result = await db.execute(
        select(
            func.count(CachedExercise.id),
            func.count(CachedExercise.id).filter(CachedExercise.expires_at > now),
            func.coalesce(func.sum(CachedExercise.usage_count), 0),
            func.coalesce(func.sum(CachedExercise.generation_cost), 0),
            func.avg(CachedExercise.generation_time_ms),
        )
    )
    total, active, usage, cost, avg_time = result.one()
    return {
        "total_entries": int(total or 0),
        "active_entries": int(active or 0),
        "total_usage": int(usage or 0),
        "total_cost": float(cost or 0),
        "avg_generation_time_ms": float(avg_time) if avg_time is not None else None,
    }


@_storage_guard
async def aggregate_by_type(db: AsyncSession, now: datetime) -> List[Dict[str, Any]]:
    """Scan the cache for counters grouped by exercise type."""
    result = await db.execute(
        select(
            CachedExercise.exercise_type,
            func.count(CachedExercise.id),
            func.count(CachedExercise.id).filter(CachedExercise.expires_at > now),
            func.coalesce(func.sum(CachedExercise.usage_count), 0),
            func.coalesce(func.sum(CachedExercise.generation_cost), 0),
        )
        .group_by(CachedExercise.exercise_type)
        .order_by(CachedExercise.exercise_type)
    )
    return [
        {
            "exercise_type": exercise_type,
            "total_entries": int(total or 0),
            "active_entries": int(active or 0),
            "total_usage": int(usage or 0),
            "total_cost": float(cost or 0),
        }
        for exercise_type, total, active, usage, cost in result.all()
    ]


@_storage_guard
async def most_used(db: AsyncSession, now: datetime, limit: int) -> List[CachedExercise]:
    """Live entries ordered by usage, most used first."""
    result = await db.execute(
        select(CachedExercise)
        .where(CachedExercise.expires_at > now)
        .order_by(CachedExercise.usage_count.desc(), CachedExercise.last_used_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
