"""
Exercise Cache Errors

Typed failures raised by the exercise cache services. The API layer maps
each kind to an HTTP status in ``aves.main``.
"""


class ExerciseCacheError(Exception):
    """Base exception for all exercise cache errors."""

    kind = "exercise_cache_error"


class InvalidRequest(ExerciseCacheError):
    """Raised when request parameters are rejected before any I/O."""

    kind = "invalid_request"


class GenerationFailed(ExerciseCacheError):
    """Raised when the exercise generator could not produce an exercise."""

    kind = "generation_failed"

    TIMEOUT = "timeout"
    UPSTREAM = "upstream"
    QUOTA = "quota"
    MALFORMED_RESPONSE = "malformed_response"

    def __init__(self, message: str, reason: str = UPSTREAM) -> None:
        self.reason = reason
        super().__init__(message)


class StorageUnavailable(ExerciseCacheError):
    """Raised when the exercise cache table cannot be reached."""

    kind = "storage_unavailable"
