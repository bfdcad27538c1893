"""
Aves Backend - Models Module

This module exports all SQLAlchemy models for the application.
Import Base for Alembic migrations.
"""

from aves.core.database import Base

# Enums
from aves.models.enums import ExerciseType, UserLevel

# Models
from aves.models.exercise_cache import CachedExercise

__all__ = [
    # Base
    "Base",
    # Enums
    "ExerciseType",
    "UserLevel",
    # Models
    "CachedExercise",
]
