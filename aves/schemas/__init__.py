"""
Aves Backend - Schemas Module

Pydantic models for request/response validation.
"""

from aves.schemas.exercise import (
    CacheStats,
    ClearCacheResponse,
    ExerciseMetadata,
    ExerciseTypeStats,
    GenerateExerciseResponse,
    GenerationRequest,
    PopularExercise,
    PrefetchRequest,
    PrefetchResponse,
)

__all__ = [
    # Generation
    "GenerationRequest",
    "ExerciseMetadata",
    "GenerateExerciseResponse",
    # Prefetch
    "PrefetchRequest",
    "PrefetchResponse",
    # Administration
    "ClearCacheResponse",
    "CacheStats",
    "ExerciseTypeStats",
    "PopularExercise",
]
