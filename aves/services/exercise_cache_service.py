"""
Exercise Cache Service

Serves AI-generated exercises from the persistent cache, generating and
storing them on a miss. Also handles prefetching, per-user cache clearing
and cache statistics.
"""

import asyncio
import logging
import math
import random
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterator, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from aves.core.config import settings
from aves.core.exceptions import ExerciseCacheError, GenerationFailed, InvalidRequest
from aves.models.enums import ExerciseType
from aves.schemas.exercise import (
    CacheStats,
    ExerciseMetadata,
    ExerciseTypeStats,
    GenerateExerciseResponse,
    GenerationRequest,
    PopularExercise,
    PrefetchResponse,
)
from aves.services import cache_store
from aves.services.ai_service import ExerciseGenerator, GenerationResult
from aves.services.cache_keys import MAX_DIFFICULTY, MIN_DIFFICULTY, derive_key
from aves.services.user_context import UserContext, build_user_context


logger = logging.getLogger(__name__)


# ============== Request Validation ==============

MAX_USER_ID_LENGTH = 64
MAX_TOPICS = 10
MAX_TOPIC_LENGTH = 50
MAX_POPULAR_LIMIT = 100

# Underscore separates key segments, so it cannot appear in a user ID.
_USER_ID_PATTERN = re.compile(r"^[^\s_]+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_user_id(user_id: object) -> str:
    """
    Check that a user ID can safely prefix cache keys.

    Raises:
        InvalidRequest: If empty, too long, or containing '_' or whitespace.
    """
    if not isinstance(user_id, str) or not user_id:
        raise InvalidRequest("user_id is required")
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise InvalidRequest(f"user_id must be at most {MAX_USER_ID_LENGTH} characters")
    if not _USER_ID_PATTERN.match(user_id):
        raise InvalidRequest("user_id must not contain underscores or whitespace")
    return user_id


def resolve_exercise_type(exercise_type: Optional[str]) -> ExerciseType:
    """Parse the requested type, picking one at random when omitted."""
    if exercise_type is None:
        return random.choice(list(ExerciseType))
    try:
        return ExerciseType(exercise_type)
    except ValueError:
        raise InvalidRequest(f"Unknown exercise type: {exercise_type}")


def validate_difficulty(difficulty: Optional[float]) -> Optional[float]:
    """Reject difficulties outside 1..5; None means use the user's default."""
    if difficulty is None:
        return None
    if isinstance(difficulty, bool) or not isinstance(difficulty, (int, float)):
        raise InvalidRequest("difficulty must be a number")
    if not math.isfinite(difficulty) or not MIN_DIFFICULTY <= difficulty <= MAX_DIFFICULTY:
        raise InvalidRequest(
            f"difficulty must be between {MIN_DIFFICULTY} and {MAX_DIFFICULTY}"
        )
    return difficulty


def validate_topics(topics: Optional[List[str]]) -> List[str]:
    """Strip and de-duplicate topic tags, preserving order."""
    cleaned: List[str] = []
    for topic in topics or []:
        if not isinstance(topic, str) or not topic.strip():
            raise InvalidRequest("topics must be non-empty strings")
        topic = topic.strip()
        if len(topic) > MAX_TOPIC_LENGTH:
            raise InvalidRequest(f"topics must be at most {MAX_TOPIC_LENGTH} characters")
        if topic not in cleaned:
            cleaned.append(topic)
    if len(cleaned) > MAX_TOPICS:
        raise InvalidRequest(f"At most {MAX_TOPICS} topics are allowed")
    return cleaned


def prefetch_slots(base_difficulty: int) -> Iterator[Tuple[int, ExerciseType]]:
    """
    Rotation of (difficulty, type) slots walked by prefetch.

    The base difficulty comes first, then neighbours outward (lower before
    higher at equal distance), each paired with every type in enum order.
    """
    difficulties = sorted(
        range(MIN_DIFFICULTY, MAX_DIFFICULTY + 1),
        key=lambda d: (abs(d - base_difficulty), d),
    )
    for difficulty in difficulties:
        for exercise_type in ExerciseType:
            yield difficulty, exercise_type


def hit_rate(hits: int, generated: int) -> float:
    """Fraction of requests served from cache; 0 when nothing happened yet."""
    total = hits + generated
    if total <= 0:
        return 0.0
    return round(hits / total, 4)


# ============== Service ==============

class ExerciseCacheService:
    """
    Generate-or-serve orchestration over the persistent exercise cache.

    Args:
        db: Database session used for every store call.
        generator: Exercise generator invoked on cache misses.
        ttl_seconds: Lifetime of new entries (defaults to settings).
        generation_timeout: Upper bound on one generation, in seconds.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        db: AsyncSession,
        generator: ExerciseGenerator,
        ttl_seconds: Optional[int] = None,
        generation_timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.generator = generator
        self.ttl = timedelta(
            seconds=ttl_seconds if ttl_seconds is not None else settings.EXERCISE_CACHE_TTL_SECONDS
        )
        self.generation_timeout = (
            generation_timeout
            if generation_timeout is not None
            else settings.GENERATION_TIMEOUT_SECONDS
        )
        self._clock = clock or _utcnow

    async def request_exercise(self, request: GenerationRequest) -> GenerateExerciseResponse:
        """
        Serve an exercise from cache, or generate and cache a new one.

        Args:
            request: Generation request.

        Returns:
            Exercise payload with metadata telling whether it was generated.

        Raises:
            InvalidRequest: Bad parameters (raised before any I/O).
            GenerationFailed: Miss and the generator failed or timed out.
            StorageUnavailable: Cache storage unreachable.
        """
        user_id = validate_user_id(request.user_id)
        exercise_type = resolve_exercise_type(request.exercise_type)
        difficulty = validate_difficulty(request.difficulty)
        topics = validate_topics(request.topics)

        context = build_user_context(user_id, difficulty, topics)
        cache_key = derive_key(user_id, exercise_type, context.difficulty)

        entry = await cache_store.claim_hit(self.db, cache_key, self._clock())
        if entry is not None:
            logger.info(f"Cache hit: {cache_key} (usage_count={entry.usage_count})")
            return GenerateExerciseResponse(
                exercise=entry.exercise_data,
                metadata=ExerciseMetadata(
                    generated=False,
                    cache_key=cache_key,
                    cost=0.0,
                    difficulty=entry.difficulty,
                    exercise_type=exercise_type,
                ),
            )

        logger.info(f"Cache miss: {cache_key}")
        result = await self._generate(context, exercise_type, topics)
        await self._store(cache_key, context, exercise_type, topics, result)

        return GenerateExerciseResponse(
            exercise=result.exercise,
            metadata=ExerciseMetadata(
                generated=True,
                cache_key=cache_key,
                cost=result.cost,
                difficulty=context.difficulty,
                exercise_type=exercise_type,
                generation_time=result.generation_time_ms,
            ),
        )

    async def prefetch(self, user_id: str, count: int) -> PrefetchResponse:
        """
        Warm the cache with up to `count` exercise slots for a user.

        Live slots count as cached; missing ones are generated. A generation
        failure aborts the run; entries created before it are kept.

        Raises:
            InvalidRequest: Bad user ID or count outside 1..PREFETCH_MAX_COUNT.
            GenerationFailed: A generation failed.
            StorageUnavailable: Cache storage unreachable.
        """
        user_id = validate_user_id(user_id)
        if isinstance(count, bool) or not isinstance(count, int):
            raise InvalidRequest("count must be an integer")
        if not 1 <= count <= settings.PREFETCH_MAX_COUNT:
            raise InvalidRequest(f"count must be between 1 and {settings.PREFETCH_MAX_COUNT}")

        base = build_user_context(user_id)
        prefetched = 0
        cached = 0
        total_cost = 0.0

        for difficulty, exercise_type in prefetch_slots(base.difficulty):
            if prefetched + cached >= count:
                break

            cache_key = derive_key(user_id, exercise_type, difficulty)
            if await cache_store.has_live_entry(self.db, cache_key, self._clock()):
                cached += 1
                continue

            context = build_user_context(user_id, difficulty)
            result = await self._generate(context, exercise_type, [])
            await self._store(cache_key, context, exercise_type, [], result)
            prefetched += 1
            total_cost += result.cost

        logger.info(
            f"Prefetch for {user_id}: {prefetched} generated, {cached} already cached, "
            f"cost ${total_cost:.6f}"
        )
        return PrefetchResponse(
            prefetched=prefetched,
            cached=cached,
            total_cost=round(total_cost, 6),
        )

    async def clear_cache(self, user_id: str) -> int:
        """Delete every cached exercise for a user. Returns the count deleted."""
        user_id = validate_user_id(user_id)
        deleted = await cache_store.delete_for_user(self.db, user_id)
        logger.info(f"Cleared {deleted} cached exercises for {user_id}")
        return deleted

    async def get_stats(self) -> CacheStats:
        """Aggregate statistics over the whole cache."""
        totals = await cache_store.aggregate_totals(self.db, self._clock())

        total_generated = totals["total_entries"]
        cached = totals["total_usage"]
        avg_time = totals["avg_generation_time_ms"]

        return CacheStats(
            total_generated=total_generated,
            cached=cached,
            cache_hit_rate=hit_rate(cached, total_generated),
            total_cost=round(totals["total_cost"], 6),
            avg_generation_time=round(avg_time, 2) if avg_time is not None else 0.0,
            active_entries=totals["active_entries"],
            expired_entries=total_generated - totals["active_entries"],
        )

    async def get_stats_by_type(self) -> List[ExerciseTypeStats]:
        """Cache statistics broken down by exercise type."""
        rows = await cache_store.aggregate_by_type(self.db, self._clock())
        return [
            ExerciseTypeStats(
                exercise_type=row["exercise_type"],
                total_entries=row["total_entries"],
                active_entries=row["active_entries"],
                expired_entries=row["total_entries"] - row["active_entries"],
                total_usage=row["total_usage"],
                total_cost=round(row["total_cost"], 6),
                cache_hit_rate=hit_rate(row["total_usage"], row["total_entries"]),
            )
            for row in rows
        ]

    async def get_popular_exercises(self, limit: int = 10) -> List[PopularExercise]:
        """Most frequently served live entries."""
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_POPULAR_LIMIT:
            raise InvalidRequest(f"limit must be between 1 and {MAX_POPULAR_LIMIT}")
        entries = await cache_store.most_used(self.db, self._clock(), limit)
        return [PopularExercise.model_validate(entry) for entry in entries]

    async def cleanup_expired(self) -> int:
        """Delete expired entries. Returns the count deleted."""
        deleted = await cache_store.delete_expired(self.db, self._clock())
        logger.info(f"Removed {deleted} expired cached exercises")
        return deleted

    # ============== Internal ==============

    async def _generate(
        self,
        context: UserContext,
        exercise_type: ExerciseType,
        topics: List[str],
    ) -> GenerationResult:
        """Invoke the generator under the configured timeout."""
        try:
            result = await asyncio.wait_for(
                self.generator.generate(context, exercise_type, topics),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                f"Generation of {exercise_type.value} for {context.user_id} timed out "
                f"after {self.generation_timeout}s"
            )
            raise GenerationFailed(
                f"Exercise generation timed out after {self.generation_timeout}s",
                reason=GenerationFailed.TIMEOUT,
            ) from e
        except ExerciseCacheError:
            raise
        except Exception as e:
            logger.exception(f"Generator raised an unexpected error for {exercise_type.value}")
            raise GenerationFailed(
                f"Exercise generation failed: {e}",
                reason=GenerationFailed.UPSTREAM,
            ) from e

        if (
            not isinstance(result.exercise, dict)
            or result.cost < 0
            or result.generation_time_ms < 0
        ):
            raise GenerationFailed(
                "Generator returned an invalid result",
                reason=GenerationFailed.MALFORMED_RESPONSE,
            )
        return result

    async def _store(
        self,
        cache_key: str,
        context: UserContext,
        exercise_type: ExerciseType,
        topics: List[str],
        result: GenerationResult,
    ) -> None:
        now = self._clock()
        await cache_store.upsert_entry(
            self.db,
            cache_key=cache_key,
            exercise_type=exercise_type.value,
            exercise_data=result.exercise,
            user_context_hash=context.context_hash,
            difficulty=context.difficulty,
            topics=topics,
            generation_cost=Decimal(str(round(result.cost, 6))),
            generation_time_ms=result.generation_time_ms,
            now=now,
            expires_at=now + self.ttl,
        )
        logger.info(
            f"Cached {cache_key} (cost ${result.cost:.6f}, {result.generation_time_ms}ms)"
        )
