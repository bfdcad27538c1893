"""
User Context

Builds the personalization context handed to the exercise generator.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from aves.core.config import settings
from aves.models.enums import UserLevel
from aves.services.cache_keys import normalize_difficulty, user_context_hash


@dataclass
class UserContext:
    """Proficiency context for a single generation request."""
    user_id: str
    level: UserLevel
    difficulty: int
    weak_topics: List[str] = field(default_factory=list)
    mastered_topics: List[str] = field(default_factory=list)

    @property
    def context_hash(self) -> str:
        return user_context_hash(self.level.value, self.difficulty)


def level_for_difficulty(difficulty: int) -> UserLevel:
    """Map a difficulty bucket onto a proficiency level."""
    if difficulty <= 2:
        return UserLevel.BEGINNER
    if difficulty == 3:
        return UserLevel.INTERMEDIATE
    return UserLevel.ADVANCED


def build_user_context(
    user_id: str,
    difficulty: Optional[float] = None,
    topics: Optional[List[str]] = None,
) -> UserContext:
    """
    Build the generation context for a user.

    Args:
        user_id: Requesting user.
        difficulty: Requested difficulty, or None for the default level.
        topics: Requested topics; they become the focus (weak) topics.

    Returns:
        UserContext with a resolved difficulty bucket.
    """
    if difficulty is None:
        difficulty = settings.DEFAULT_DIFFICULTY
    bucket = normalize_difficulty(difficulty)

    return UserContext(
        user_id=user_id,
        level=level_for_difficulty(bucket),
        difficulty=bucket,
        weak_topics=list(topics or []),
    )
