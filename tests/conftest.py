"""
Pytest Configuration and Fixtures

Provides reusable fixtures for testing the Aves Backend: a mocked database
session, an in-memory stand-in for the exercise cache table, a scripted
exercise generator and a controllable clock.
"""

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from aves.core.exceptions import StorageUnavailable
from aves.models.exercise_cache import CachedExercise
from aves.services.ai_service import GenerationResult
from aves.services.exercise_cache_service import ExerciseCacheService


# ==================== Database Fixtures ====================

@pytest.fixture
def mock_async_session() -> AsyncMock:
    """
    Create a mock async database session.

    Returns:
        AsyncMock configured to behave like AsyncSession.
    """
    session = AsyncMock(spec=AsyncSession)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.execute = AsyncMock()
    return session


class InMemoryCacheStore:
    """
    Dict-backed replacement for aves.services.cache_store.

    Mirrors the store's function signatures so it can be patched in for the
    module the service imports.
    """

    def __init__(self):
        self.rows: Dict[str, CachedExercise] = {}
        self.unavailable = False

    def _check(self) -> None:
        if self.unavailable:
            raise StorageUnavailable("Exercise cache storage is unavailable")

    async def claim_hit(self, db, cache_key: str, now: datetime) -> Optional[CachedExercise]:
        self._check()
        entry = self.rows.get(cache_key)
        if entry is None or entry.expires_at <= now:
            return None
        entry.usage_count += 1
        entry.last_used_at = now
        return entry

    async def has_live_entry(self, db, cache_key: str, now: datetime) -> bool:
        self._check()
        entry = self.rows.get(cache_key)
        return entry is not None and entry.expires_at > now

    async def upsert_entry(self, db, *, cache_key: str, now: datetime, **values) -> CachedExercise:
        self._check()
        entry = CachedExercise(
            id=uuid.uuid4(),
            cache_key=cache_key,
            usage_count=0,
            created_at=now,
            last_used_at=now,
            **values,
        )
        self.rows[cache_key] = entry
        return entry

    async def delete_for_user(self, db, user_id: str) -> int:
        self._check()
        doomed = [key for key in self.rows if key.startswith(f"{user_id}_")]
        for key in doomed:
            del self.rows[key]
        return len(doomed)

    async def delete_expired(self, db, now: datetime) -> int:
        self._check()
        doomed = [key for key, entry in self.rows.items() if entry.expires_at <= now]
        for key in doomed:
            del self.rows[key]
        return len(doomed)

    async def aggregate_totals(self, db, now: datetime) -> Dict[str, Any]:
        self._check()
        entries = list(self.rows.values())
        timings = [e.generation_time_ms for e in entries if e.generation_time_ms is not None]
        return {
            "total_entries": len(entries),
            "active_entries": sum(1 for e in entries if e.expires_at > now),
            "total_usage": sum(e.usage_count for e in entries),
            "total_cost": float(sum((e.generation_cost for e in entries), Decimal("0"))),
            "avg_generation_time_ms": sum(timings) / len(timings) if timings else None,
        }

    async def aggregate_by_type(self, db, now: datetime) -> List[Dict[str, Any]]:
        self._check()
        grouped: Dict[str, List[CachedExercise]] = {}
        for entry in self.rows.values():
            grouped.setdefault(entry.exercise_type, []).append(entry)
        return [
            {
                "exercise_type": exercise_type,
                "total_entries": len(entries),
                "active_entries": sum(1 for e in entries if e.expires_at > now),
                "total_usage": sum(e.usage_count for e in entries),
                "total_cost": float(sum((e.generation_cost for e in entries), Decimal("0"))),
            }
            for exercise_type, entries in sorted(grouped.items())
        ]

    async def most_used(self, db, now: datetime, limit: int) -> List[CachedExercise]:
        self._check()
        live = [e for e in self.rows.values() if e.expires_at > now]
        live.sort(key=lambda e: (e.usage_count, e.last_used_at), reverse=True)
        return live[:limit]


@pytest.fixture
def memory_store():
    """Patch the service's cache store with an in-memory double."""
    store = InMemoryCacheStore()
    with patch("aves.services.exercise_cache_service.cache_store", store):
        yield store


# ==================== Generator Fixtures ====================

class FakeExerciseGenerator:
    """Scripted ExerciseGenerator that records its calls."""

    def __init__(
        self,
        cost: float = 0.003,
        generation_time_ms: int = 1200,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.cost = cost
        self.generation_time_ms = generation_time_ms
        self.error = error
        self.delay = delay
        self.calls: List[tuple] = []

    async def generate(self, context, exercise_type, topics) -> GenerationResult:
        self.calls.append((context, exercise_type, list(topics)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GenerationResult(
            exercise={
                "id": f"ai_{exercise_type.value}_{len(self.calls)}",
                "type": exercise_type.value,
                "instructions": "Complete the sentence by selecting the correct Spanish word.",
                "metadata": {"difficulty": context.difficulty, "topics": list(topics)},
            },
            cost=self.cost,
            generation_time_ms=self.generation_time_ms,
        )


@pytest.fixture
def fake_generator() -> FakeExerciseGenerator:
    return FakeExerciseGenerator()


# ==================== Clock Fixtures ====================

class TickingClock:
    """Clock that advances one second on every read."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.now += self.step
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def cache_service(mock_async_session, fake_generator, clock, memory_store) -> ExerciseCacheService:
    """Exercise cache service wired to the in-memory store and fake generator."""
    return ExerciseCacheService(
        db=mock_async_session,
        generator=fake_generator,
        ttl_seconds=86400,
        generation_timeout=5,
        clock=clock,
    )


# ==================== OpenAI Fixtures ====================

@pytest.fixture
def sample_contextual_fill() -> dict:
    """A well-formed contextual fill answer from the model."""
    return {
        "sentence": "El cardenal tiene plumas ___ brillantes.",
        "correctAnswer": "rojas",
        "options": ["rojas", "azules", "verdes", "amarillas"],
        "context": "Cardinals are known for their bright red plumage.",
        "culturalNote": "In Spanish, color adjectives agree in gender with the noun.",
    }


@pytest.fixture
def mock_openai_response(sample_contextual_fill):
    """
    Create a mock OpenAI chat completion response.

    Returns:
        MagicMock structured like OpenAI ChatCompletion.
    """
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = json.dumps(sample_contextual_fill)
    response.usage.prompt_tokens = 400
    response.usage.completion_tokens = 150
    return response


@pytest.fixture
def mock_openai_client(mock_openai_response):
    """
    Create a mock OpenAI async client.

    Returns:
        MagicMock configured for chat completions.
    """
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=mock_openai_response)
    return client
