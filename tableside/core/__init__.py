"""
Core module initialization.
Exports configuration, logging utilities and domain errors.
"""

from tableside.core.config import get_settings, Settings, EnvironmentMode
from tableside.core.exceptions import (
    TablesideError,
    ValidationFailed,
    AuthenticationRequired,
    PermissionDenied,
    NotFound,
    PersistenceError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "TablesideError",
    "ValidationFailed",
    "AuthenticationRequired",
    "PermissionDenied",
    "NotFound",
    "PersistenceError",
]
