"""
Cache Key Unit Tests

Tests for key derivation, difficulty bucketing and user context building.
"""

import pytest

from aves.models.enums import ExerciseType, UserLevel
from aves.services.cache_keys import derive_key, normalize_difficulty, user_prefix
from aves.services.user_context import build_user_context, level_for_difficulty


class TestDeriveKey:
    """Tests for derive_key."""

    def test_deterministic(self):
        for exercise_type in ExerciseType:
            for difficulty in (1, 2.4, 3, 4.6, 5):
                assert derive_key("u1", exercise_type, difficulty) == derive_key("u1", exercise_type, difficulty)

    def test_format(self):
        assert derive_key("u1", ExerciseType.CONTEXTUAL_FILL, 2) == "u1_contextual_fill_2"

    def test_accepts_type_value(self):
        assert derive_key("u1", "term_matching", 3) == derive_key("u1", ExerciseType.TERM_MATCHING, 3)

    def test_key_starts_with_user_prefix(self):
        assert derive_key("abc", ExerciseType.IMAGE_LABELING, 4).startswith(user_prefix("abc"))

    def test_distinct_inputs_give_distinct_keys(self):
        keys = {
            derive_key(user, exercise_type, difficulty)
            for user in ("u1", "u2")
            for exercise_type in ExerciseType
            for difficulty in range(1, 6)
        }
        assert len(keys) == 2 * len(ExerciseType) * 5


class TestNormalizeDifficulty:
    """Tests for difficulty bucketing."""

    @pytest.mark.parametrize(
        "value, expected",
        [(1, 1), (1.49, 1), (1.5, 2), (2.2, 2), (2.5, 3), (4.5, 5), (5, 5), (0.2, 1), (7, 5)],
    )
    def test_rounds_half_up_and_clamps(self, value, expected):
        assert normalize_difficulty(value) == expected


class TestUserContext:
    """Tests for the generation context builder."""

    @pytest.mark.parametrize(
        "difficulty, level",
        [(1, UserLevel.BEGINNER), (2, UserLevel.BEGINNER), (3, UserLevel.INTERMEDIATE),
         (4, UserLevel.ADVANCED), (5, UserLevel.ADVANCED)],
    )
    def test_level_for_difficulty(self, difficulty, level):
        assert level_for_difficulty(difficulty) is level

    def test_defaults(self):
        context = build_user_context("u1")

        assert context.difficulty == 2
        assert context.level is UserLevel.BEGINNER
        assert context.weak_topics == []
        assert context.context_hash == "beginner_2"

    def test_topics_become_weak_topics(self):
        context = build_user_context("u1", 3.4, ["anatomy"])

        assert context.difficulty == 3
        assert context.weak_topics == ["anatomy"]
        assert context.context_hash == "intermediate_3"
