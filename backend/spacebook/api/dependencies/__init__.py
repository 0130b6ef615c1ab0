# backend/spacebook/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import CurrentUser, get_current_user, require_admin, require_cron_secret
from .database import get_db
from .services import get_services

__all__ = [
    # Auth
    "CurrentUser",
    "get_current_user",
    "require_admin",
    "require_cron_secret",
    # Database
    "get_db",
    # Services
    "get_services",
]
