"""Core infrastructure module.

This module exports core utilities used across features.
Never imports from features - only from external libraries.
"""

from .config import Settings, get_settings, get_global_settings
from .database import get_db, db_manager
from .exceptions import (
    ServiceException,
    DatabaseError,
    ValidationError,
    NotFoundError,
    ExternalServiceError,
    TaskExecutionError,
)
from .models import Base

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "get_global_settings",
    # Database
    "get_db",
    "db_manager",
    # Exceptions
    "ServiceException",
    "DatabaseError",
    "ValidationError",
    "NotFoundError",
    "ExternalServiceError",
    "TaskExecutionError",
    # Models
    "Base",
]
