"""
Utility helpers for migrator feature flag checks.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_migrator_enabled(app=None) -> bool:
    """Return True when the migrator feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("MIGRATOR_ENABLED", False))


def get_target_base_prefix(app=None) -> str:
    """Return the network's base table prefix."""
    config = _get_config(app)
    return config.get("MIGRATOR_TARGET_BASE_PREFIX") or "wp_"
