"""
Migration stages.

Each stage is a plain function taking a ``MigrationContext`` and returning a
``StageResult``. Fatal storage failures raise; per-row problems the stage
reports and moves past are recorded on the result.
"""

from __future__ import annotations

from typing import Callable, Dict

from .extra_tables import migrate_extra_tables
from .media import migrate_media
from .options import migrate_options
from .posts import migrate_posts
from .result import StageResult
from .users import migrate_users

STAGE_RUNNERS: Dict[str, Callable[..., StageResult]] = {
    "users": migrate_users,
    "options": migrate_options,
    "posts": migrate_posts,
    "media": migrate_media,
    "extra": migrate_extra_tables,
}

__all__ = [
    "STAGE_RUNNERS",
    "StageResult",
    "migrate_extra_tables",
    "migrate_media",
    "migrate_options",
    "migrate_posts",
    "migrate_users",
]
