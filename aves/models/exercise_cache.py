"""
Exercise Cache Model

Persisted AI-generated exercises, reusable until they expire.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from aves.core.database import Base


class CachedExercise(Base):
    """
    Cached exercise model.

    One row per cache key. A later write for the same key replaces the row
    (payload, cost, timestamps and usage count).

    Attributes:
        id: UUID primary key.
        cache_key: Unique key "{user_id}_{exercise_type}_{difficulty}".
        exercise_type: Exercise type value (see ExerciseType).
        exercise_data: Opaque generated exercise document.
        user_context_hash: Proficiency bucket used at generation time ("beginner_2").
        difficulty: Difficulty bucket 1-5.
        topics: Topic tags the generation was biased with.
        usage_count: Number of cache hits served (0 right after generation).
        generation_cost: Cost charged for the generation call.
        generation_time_ms: Generation latency in milliseconds.
        created_at: Insertion (or replacement) time.
        last_used_at: Last hit time.
        expires_at: created_at + TTL; rows past this are treated as absent.
    """

    __tablename__ = "exercise_cache"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    cache_key: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    exercise_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    exercise_data: Mapped[Dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
    )
    user_context_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    difficulty: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    topics: Mapped[List[str]] = mapped_column(
        ARRAY(Text),
        default=list,
        server_default="{}",
        nullable=False,
    )
    usage_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
    )
    generation_cost: Mapped[Decimal] = mapped_column(
        Numeric(10, 6),
        default=Decimal("0"),
        server_default="0",
        nullable=False,
    )
    generation_time_ms: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    last_used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("difficulty >= 1 AND difficulty <= 5", name="ck_exercise_cache_difficulty"),
        CheckConstraint("usage_count >= 0", name="ck_exercise_cache_usage_count"),
        CheckConstraint("generation_cost >= 0", name="ck_exercise_cache_generation_cost"),
        Index("ix_exercise_cache_type_difficulty", "exercise_type", "difficulty"),
        Index("ix_exercise_cache_expires_at", "expires_at"),
        Index("ix_exercise_cache_last_used_at", "last_used_at"),
    )

    def __repr__(self) -> str:
        return f"<CachedExercise(key={self.cache_key}, usage={self.usage_count})>"
