"""
Exercise Schemas

Pydantic models for AI exercise generation, prefetch, cache administration
and statistics.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from aves.models.enums import ExerciseType


class GenerationRequest(BaseModel):
    """
    Schema for an exercise generation request.

    Values are checked by the exercise cache service, which raises
    InvalidRequest for unknown types or out-of-range difficulty.
    """

    user_id: str = Field(..., description="Requesting user ID")
    exercise_type: Optional[str] = Field(
        None,
        description="Exercise type; chosen automatically when omitted",
    )
    difficulty: Optional[float] = Field(
        None,
        description="Difficulty 1-5; defaults from the user's context",
    )
    topics: List[str] = Field(
        default_factory=list,
        description="Topic tags to bias generation (e.g. ['colors', 'anatomy'])",
    )


class ExerciseMetadata(BaseModel):
    """Schema describing how an exercise was served."""

    generated: bool
    cache_key: str
    cost: float
    difficulty: int
    exercise_type: ExerciseType
    generation_time: Optional[int] = Field(
        None,
        description="Generation latency in milliseconds (fresh generations only)",
    )


class GenerateExerciseResponse(BaseModel):
    """Schema for the generate-or-serve response."""

    exercise: Dict[str, Any]
    metadata: ExerciseMetadata


class PrefetchRequest(BaseModel):
    """Schema for prefetching exercises for a user."""

    user_id: str = Field(..., description="User to prefetch exercises for")
    count: int = Field(10, description="Number of exercise slots to fill")


class PrefetchResponse(BaseModel):
    """Schema for prefetch result."""

    prefetched: int = Field(..., description="Entries created by generation")
    cached: int = Field(..., description="Slots already satisfied by live entries")
    total_cost: float = Field(0.0, description="Cost of the generations performed")


class ClearCacheResponse(BaseModel):
    """Schema for cache deletion result."""

    message: str
    deleted_count: int


class CacheStats(BaseModel):
    """Aggregate statistics over the exercise cache."""

    total_generated: int = Field(..., description="Generations recorded in the cache")
    cached: int = Field(..., description="Exercises served from cache (hits)")
    cache_hit_rate: float = Field(..., ge=0, le=1, description="cached / (cached + total_generated)")
    total_cost: float = Field(..., description="Sum of generation costs")
    avg_generation_time: float = Field(..., description="Mean generation latency in ms")
    active_entries: int = 0
    expired_entries: int = 0


class ExerciseTypeStats(BaseModel):
    """Cache statistics for a single exercise type."""

    exercise_type: str
    total_entries: int
    active_entries: int
    expired_entries: int
    total_usage: int
    total_cost: float
    cache_hit_rate: float = Field(..., ge=0, le=1)


class PopularExercise(BaseModel):
    """A frequently served cache entry."""

    cache_key: str
    exercise_type: str
    difficulty: int
    usage_count: int
    topics: List[str] = Field(default_factory=list)
    created_at: datetime
    last_used_at: datetime

    model_config = {"from_attributes": True}
