"""
Aves Backend - FastAPI Application

Main entry point for the AI exercise generation and caching service.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aves.api.v1 import router as api_v1_router
from aves.core.config import settings
from aves.core.database import close_db
from aves.core.exceptions import (
    ExerciseCacheError,
    GenerationFailed,
    InvalidRequest,
    StorageUnavailable,
)
from aves.core.http_client import close_http_client
from aves.services.ai_service import close_openai_client


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info("Starting Aves Backend...")
    yield
    logger.info("Shutting down Aves Backend...")
    close_openai_client()
    await close_http_client()
    await close_db()


# Create FastAPI application
app = FastAPI(
    title="Aves Backend",
    description="AI-generated Spanish bird vocabulary exercises with persistent caching.",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def status_code_for(exc: ExerciseCacheError) -> int:
    """HTTP status for an exercise cache error."""
    if isinstance(exc, InvalidRequest):
        return 400
    if isinstance(exc, GenerationFailed):
        return 504 if exc.reason == GenerationFailed.TIMEOUT else 502
    if isinstance(exc, StorageUnavailable):
        return 503
    return 500


@app.exception_handler(ExerciseCacheError)
async def exercise_cache_error_handler(request: Request, exc: ExerciseCacheError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.kind}): {exc}")

    content = {"detail": str(exc), "error": exc.kind}
    if isinstance(exc, GenerationFailed):
        content["reason"] = exc.reason
    return JSONResponse(status_code=status_code, content=content)


# Include API routers
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        dict: Health status and environment info.
    """
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": "0.1.0",
    }


@app.get("/", tags=["Root"])
async def root() -> dict:
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links.
    """
    return {
        "message": "Welcome to Aves Backend API",
        "docs": "/docs",
        "health": "/health",
    }
