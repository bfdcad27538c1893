"""
API v1 Router

Aggregates all v1 endpoint routers.
"""

from fastapi import APIRouter

from aves.api.v1.endpoints import exercises

router = APIRouter()

# Include AI exercise routes
router.include_router(exercises.router)
