"""
API Dependencies

Reusable dependencies for API routes.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aves.core.database import get_db
from aves.services.ai_service import ExerciseGenerator, OpenAIExerciseGenerator
from aves.services.exercise_cache_service import ExerciseCacheService


async def get_exercise_generator() -> ExerciseGenerator:
    """
    Dependency providing the exercise generator used on cache misses.

    Override in tests to avoid calling OpenAI.
    """
    return OpenAIExerciseGenerator()


async def get_exercise_cache_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    generator: Annotated[ExerciseGenerator, Depends(get_exercise_generator)],
) -> ExerciseCacheService:
    """
    Dependency providing a request-scoped exercise cache service.

    Args:
        db: Database session (auto-injected).
        generator: Exercise generator (auto-injected).

    Returns:
        ExerciseCacheService bound to this request's session.
    """
    return ExerciseCacheService(db=db, generator=generator)
