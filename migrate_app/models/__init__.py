# migrate_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .migration import IdentityMapping, MigrationJob, MigrationJobStatus

__all__ = [
    "db",
    "BaseModel",
    "IdentityMapping",
    "MigrationJob",
    "MigrationJobStatus",
]
