"""
Exception taxonomy for the migration engine.

Fatal conditions raise; conditions the pipeline reports and continues past
(identity-mapping misses, single-user insert failures) are carried on result
objects instead.
"""

from __future__ import annotations


class MigratorError(Exception):
    """Base class for migration failures surfaced to the CLI and worker."""

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class ConfigurationError(MigratorError):
    """Job not found, unknown stage or unmet stage prerequisite; no job status change."""


class MigrationInProgressError(ConfigurationError):
    """Another invocation holds the lease for this job."""

    def __init__(self, site_id: int) -> None:
        super().__init__(f"Migration for site {site_id} is already in progress.")
        self.site_id = site_id


class SourceUnavailableError(MigratorError):
    """The source store could not be reached."""


class BulkOperationError(MigratorError):
    """A read/insert/copy failed at the storage layer. Partial writes are retained."""

    def __init__(self, message: str, *, stage: str | None = None, table: str | None = None) -> None:
        super().__init__(message, stage=stage)
        self.table = table
