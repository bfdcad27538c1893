"""
AI Exercise Routes

Endpoints for generating, prefetching and administering cached
AI-generated exercises.
"""

from typing import Annotated, List

from fastapi import APIRouter, Depends, Request

from aves.api.deps import get_exercise_cache_service
from aves.middleware.rate_limit import generation_limiter, rate_limit
from aves.schemas.exercise import (
    CacheStats,
    ClearCacheResponse,
    ExerciseTypeStats,
    GenerateExerciseResponse,
    GenerationRequest,
    PopularExercise,
    PrefetchRequest,
    PrefetchResponse,
)
from aves.services.exercise_cache_service import ExerciseCacheService


router = APIRouter(prefix="/ai/exercises", tags=["AI Exercises"])


@router.post(
    "/generate",
    response_model=GenerateExerciseResponse,
    summary="Generate or serve a cached exercise",
)
@rate_limit(generation_limiter)
async def generate_exercise(
    request: Request,
    data: GenerationRequest,
    service: Annotated[ExerciseCacheService, Depends(get_exercise_cache_service)],
) -> GenerateExerciseResponse:
    """
    Get an exercise for a user.

    Served from the cache when a live entry exists for the user, type and
    difficulty; otherwise generated with AI and cached for 24 hours.
    """
    return await service.request_exercise(data)


@router.get(
    "/stats",
    response_model=CacheStats,
    summary="Get exercise cache statistics",
)
async def get_stats(
    service: Annotated[ExerciseCacheService, Depends(get_exercise_cache_service)],
) -> CacheStats:
    """Aggregate generation counts, hit rate, cost and latency."""
    return await service.get_stats()


@router.get(
    "/stats/types",
    response_model=List[ExerciseTypeStats],
    summary="Get cache statistics per exercise type",
)
async def get_stats_by_type(
    service: Annotated[ExerciseCacheService, Depends(get_exercise_cache_service)],
) -> List[ExerciseTypeStats]:
    return await service.get_stats_by_type()


@router.get(
    "/popular",
    response_model=List[PopularExercise],
    summary="Get the most served cached exercises",
)
async def get_popular_exercises(
    service: Annotated[ExerciseCacheService, Depends(get_exercise_cache_service)],
    limit: int = 10,
) -> List[PopularExercise]:
    return await service.get_popular_exercises(limit)


@router.post(
    "/prefetch",
    response_model=PrefetchResponse,
    summary="Prefetch exercises for a user",
)
async def prefetch_exercises(
    data: PrefetchRequest,
    service: Annotated[ExerciseCacheService, Depends(get_exercise_cache_service)],
) -> PrefetchResponse:
    """
    Warm the cache with up to `count` exercises for a user.

    Slots that already hold a live exercise are counted as cached and not
    regenerated.
    """
    return await service.prefetch(data.user_id, data.count)


# Registered before /cache/{user_id} so "expired" is not taken as a user ID.
@router.delete(
    "/cache/expired",
    response_model=ClearCacheResponse,
    summary="Remove expired cached exercises",
)
async def cleanup_expired(
    service: Annotated[ExerciseCacheService, Depends(get_exercise_cache_service)],
) -> ClearCacheResponse:
    deleted = await service.cleanup_expired()
    return ClearCacheResponse(
        message="Expired exercises removed",
        deleted_count=deleted,
    )


@router.delete(
    "/cache/{user_id}",
    response_model=ClearCacheResponse,
    summary="Clear a user's cached exercises",
)
async def clear_user_cache(
    user_id: str,
    service: Annotated[ExerciseCacheService, Depends(get_exercise_cache_service)],
) -> ClearCacheResponse:
    """Delete every cached exercise belonging to a user."""
    deleted = await service.clear_cache(user_id)
    return ClearCacheResponse(
        message="Cache cleared successfully",
        deleted_count=deleted,
    )
