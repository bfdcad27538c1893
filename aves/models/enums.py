"""
Database Enums

Python Enums shared by the models, schemas and services.
"""

import enum


class ExerciseType(str, enum.Enum):
    """AI-generated exercise types."""
    CONTEXTUAL_FILL = "contextual_fill"
    TERM_MATCHING = "term_matching"
    VISUAL_DISCRIMINATION = "visual_discrimination"
    VISUAL_IDENTIFICATION = "visual_identification"
    IMAGE_LABELING = "image_labeling"
    CULTURAL_CONTEXT = "cultural_context"


class UserLevel(str, enum.Enum):
    """Coarse proficiency level used to personalize generation."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
