"""
Cache Store Unit Tests

Tests for the SQL statements issued against the exercise_cache table,
using a mocked AsyncSession.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from aves.core.exceptions import StorageUnavailable
from aves.models.exercise_cache import CachedExercise
from aves.services import cache_store


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def executed_sql(session) -> str:
    """Compile the statement passed to the last session.execute call."""
    statement = session.execute.call_args.args[0]
    return str(statement.compile(dialect=postgresql.dialect()))


def with_result(session, result: MagicMock) -> MagicMock:
    session.execute = AsyncMock(return_value=result)
    return result


class TestClaimHit:
    """Tests for the atomic hit claim."""

    @pytest.mark.asyncio
    async def test_returns_entry_and_commits(self, mock_async_session):
        entry = CachedExercise(cache_key="u1_contextual_fill_2", usage_count=1)
        result = with_result(mock_async_session, MagicMock())
        result.scalar_one_or_none.return_value = entry

        claimed = await cache_store.claim_hit(mock_async_session, "u1_contextual_fill_2", NOW)

        assert claimed is entry
        mock_async_session.commit.assert_awaited_once()

        sql = executed_sql(mock_async_session)
        assert sql.startswith("UPDATE exercise_cache")
        assert "exercise_cache.usage_count + " in sql
        assert "exercise_cache.expires_at > " in sql
        assert "RETURNING" in sql

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, mock_async_session):
        result = with_result(mock_async_session, MagicMock())
        result.scalar_one_or_none.return_value = None

        assert await cache_store.claim_hit(mock_async_session, "u1_term_matching_3", NOW) is None


class TestUpsertEntry:
    """Tests for the insert-or-replace write."""

    @pytest.mark.asyncio
    async def test_upsert_on_cache_key(self, mock_async_session):
        entry = CachedExercise(cache_key="u1_contextual_fill_2", usage_count=0)
        result = with_result(mock_async_session, MagicMock())
        result.scalar_one.return_value = entry

        stored = await cache_store.upsert_entry(
            mock_async_session,
            cache_key="u1_contextual_fill_2",
            exercise_type="contextual_fill",
            exercise_data={"id": "ai_contextual_fill_1"},
            user_context_hash="beginner_2",
            difficulty=2,
            topics=["colors"],
            generation_cost=Decimal("0.003"),
            generation_time_ms=1200,
            now=NOW,
            expires_at=NOW + timedelta(hours=24),
        )

        assert stored is entry
        mock_async_session.commit.assert_awaited_once()

        sql = executed_sql(mock_async_session)
        assert sql.startswith("INSERT INTO exercise_cache")
        assert "ON CONFLICT (cache_key) DO UPDATE" in sql
        assert "usage_count = " in sql
        assert "RETURNING" in sql


class TestDeletes:
    """Tests for prefix and expiry deletes."""

    @pytest.mark.asyncio
    async def test_delete_for_user_escapes_prefix(self, mock_async_session):
        result = with_result(mock_async_session, MagicMock())
        result.rowcount = 4

        deleted = await cache_store.delete_for_user(mock_async_session, "u1")

        assert deleted == 4
        mock_async_session.commit.assert_awaited_once()

        statement = mock_async_session.execute.call_args.args[0]
        compiled = statement.compile(dialect=postgresql.dialect())
        assert "LIKE" in str(compiled)
        assert "ESCAPE '/'" in str(compiled)
        assert "u1/_" in compiled.params.values()

    @pytest.mark.asyncio
    async def test_delete_expired(self, mock_async_session):
        result = with_result(mock_async_session, MagicMock())
        result.rowcount = 0

        assert await cache_store.delete_expired(mock_async_session, NOW) == 0
        assert "exercise_cache.expires_at <= " in executed_sql(mock_async_session)


class TestAggregates:
    """Tests for the statistics queries."""

    @pytest.mark.asyncio
    async def test_aggregate_totals(self, mock_async_session):
        result = with_result(mock_async_session, MagicMock())
        result.one.return_value = (3, 2, 5, Decimal("0.009000"), Decimal("1150.5"))

        totals = await cache_store.aggregate_totals(mock_async_session, NOW)

        assert totals == {
            "total_entries": 3,
            "active_entries": 2,
            "total_usage": 5,
            "total_cost": 0.009,
            "avg_generation_time_ms": 1150.5,
        }
        assert "FILTER (WHERE" in executed_sql(mock_async_session)

    @pytest.mark.asyncio
    async def test_aggregate_totals_empty_table(self, mock_async_session):
        result = with_result(mock_async_session, MagicMock())
        result.one.return_value = (0, 0, 0, 0, None)

        totals = await cache_store.aggregate_totals(mock_async_session, NOW)

        assert totals["total_entries"] == 0
        assert totals["avg_generation_time_ms"] is None

    @pytest.mark.asyncio
    async def test_aggregate_by_type(self, mock_async_session):
        result = with_result(mock_async_session, MagicMock())
        result.all.return_value = [
            ("contextual_fill", 2, 1, 3, Decimal("0.006")),
            ("term_matching", 1, 1, 0, Decimal("0.003")),
        ]

        rows = await cache_store.aggregate_by_type(mock_async_session, NOW)

        assert [row["exercise_type"] for row in rows] == ["contextual_fill", "term_matching"]
        assert rows[0]["total_usage"] == 3
        assert rows[1]["total_cost"] == 0.003
        assert "GROUP BY exercise_cache.exercise_type" in executed_sql(mock_async_session)


class TestStorageErrors:
    """Connectivity failures become StorageUnavailable."""

    @pytest.mark.asyncio
    async def test_operational_error(self, mock_async_session):
        mock_async_session.execute = AsyncMock(
            side_effect=OperationalError("SELECT 1", {}, Exception("connection refused"))
        )

        with pytest.raises(StorageUnavailable):
            await cache_store.has_live_entry(mock_async_session, "u1_contextual_fill_2", NOW)

    @pytest.mark.asyncio
    async def test_os_error(self, mock_async_session):
        mock_async_session.execute = AsyncMock(side_effect=ConnectionRefusedError("refused"))

        with pytest.raises(StorageUnavailable) as exc_info:
            await cache_store.delete_expired(mock_async_session, NOW)

        assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)
