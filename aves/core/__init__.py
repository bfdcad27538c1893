"""
Aves Backend - Core Module

This module contains configuration, database setup, shared HTTP client and
error types.
"""

from aves.core.config import get_settings, settings
from aves.core.database import Base, get_db, get_engine

__all__ = ["settings", "get_settings", "Base", "get_db", "get_engine"]
