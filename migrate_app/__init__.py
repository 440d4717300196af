"""Multisite migration application package."""
