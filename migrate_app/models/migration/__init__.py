"""
Control-plane SQLAlchemy models: migration jobs and identity mappings.
"""

from .schema import IdentityMapping, MigrationJob, MigrationJobStatus

__all__ = [
    "IdentityMapping",
    "MigrationJob",
    "MigrationJobStatus",
]
