"""
Cache Key Derivation

Pure helpers that turn a resolved request into its exercise cache key.
"""

import math
from typing import Union

from aves.models.enums import ExerciseType


MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5


def normalize_difficulty(difficulty: Union[int, float]) -> int:
    """
    Collapse a difficulty value onto its integer bucket.

    Rounds half up (2.5 -> 3) and clamps into 1..5 so near-identical
    requests share a cache entry.
    """
    bucket = int(math.floor(float(difficulty) + 0.5))
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, bucket))


def derive_key(
    user_id: str,
    exercise_type: Union[ExerciseType, str],
    difficulty: Union[int, float],
) -> str:
    """
    Build the cache key for a (user, type, difficulty) slot.

    Example:
        derive_key("u1", ExerciseType.CONTEXTUAL_FILL, 2.2) -> "u1_contextual_fill_2"
    """
    type_value = exercise_type.value if isinstance(exercise_type, ExerciseType) else str(exercise_type)
    return f"{user_id}_{type_value}_{normalize_difficulty(difficulty)}"


def user_prefix(user_id: str) -> str:
    """Prefix shared by every cache key that belongs to a user."""
    return f"{user_id}_"


def user_context_hash(level: str, difficulty: int) -> str:
    """Coarse proficiency bucket stored alongside a generated exercise."""
    return f"{level}_{difficulty}"
