"""
Aves Backend - Services Module

Business logic layer.
"""

from aves.services import ai_service
from aves.services import cache_store
from aves.services import exercise_cache_service

__all__ = [
    "ai_service",
    "cache_store",
    "exercise_cache_service",
]
