"""
Per-run migration configuration and collaborators.

``MigrationSettings`` is the immutable view of a job plus the application
config; ``MigrationContext`` bundles it with the explicit source/target store
handles, the identity mapper, the denylists and the cleanup policy that every
stage receives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from migrate_app.models import MigrationJob

from .cleanup import CleanupPolicy
from .denylist import DenylistProvider
from .errors import ConfigurationError
from .identity import DEFAULT_FALLBACK_USER_ID, IdentityMapper
from .stores import DEFAULT_BATCH_SIZE, SourceStore, TargetStore, create_store_engine
from .wordpress import blog_prefix

logger = logging.getLogger(__name__)

DB_NAME_PLACEHOLDER = "{db_name}"


@dataclass(frozen=True)
class MigrationSettings:
    """Immutable per-migration configuration."""

    site_id: int
    site_label: str | None
    source_db_name: str
    source_prefix: str
    target_prefix: str
    target_base_prefix: str
    migrate_extra_tables: bool
    clean_unused_data: bool
    environment: str
    fallback_user_id: int = DEFAULT_FALLBACK_USER_ID
    batch_size: int = DEFAULT_BATCH_SIZE

    @classmethod
    def from_job(cls, job: MigrationJob, config: Mapping[str, Any]) -> "MigrationSettings":
        base_prefix = config.get("MIGRATOR_TARGET_BASE_PREFIX") or "wp_"
        return cls(
            site_id=job.site_id,
            site_label=job.site_label,
            source_db_name=job.source_db_name,
            source_prefix=job.source_prefix,
            target_prefix=job.target_prefix or blog_prefix(base_prefix, job.site_id),
            target_base_prefix=base_prefix,
            migrate_extra_tables=bool(job.migrate_extra_tables),
            clean_unused_data=bool(job.clean_unused_data),
            environment=str(config.get("MIGRATOR_ENVIRONMENT") or "development"),
            fallback_user_id=int(config.get("MIGRATOR_FALLBACK_USER_ID") or DEFAULT_FALLBACK_USER_ID),
            batch_size=int(config.get("MIGRATOR_BATCH_SIZE") or DEFAULT_BATCH_SIZE),
        )


@dataclass
class MigrationContext:
    """Everything a stage needs, passed explicitly."""

    settings: MigrationSettings
    source: SourceStore
    target: TargetStore
    identity: IdentityMapper
    denylists: DenylistProvider
    cleanup: CleanupPolicy
    owned_engines: tuple[Engine, ...] = field(default_factory=tuple)

    @property
    def site_id(self) -> int:
        return self.settings.site_id

    def log_extra(self, stage: str, **fields: Any) -> dict[str, Any]:
        payload = {"migrator_site_id": self.settings.site_id, "migrator_stage": stage}
        payload.update({f"migrator_{key}": value for key, value in fields.items()})
        return payload

    def close(self) -> None:
        for engine in self.owned_engines:
            engine.dispose()


def resolve_source_url(config: Mapping[str, Any], db_name: str) -> str:
    template = config.get("MIGRATOR_SOURCE_DATABASE_URL")
    if not template:
        raise ConfigurationError("MIGRATOR_SOURCE_DATABASE_URL is not configured.")
    return str(template).replace(DB_NAME_PLACEHOLDER, db_name)


def resolve_target_url(config: Mapping[str, Any]) -> str:
    url = config.get("MIGRATOR_TARGET_DATABASE_URL")
    if not url:
        raise ConfigurationError("MIGRATOR_TARGET_DATABASE_URL is not configured.")
    return str(url)


def build_migration_context(
    job: MigrationJob,
    config: Mapping[str, Any],
    *,
    session: Session | None = None,
    force: bool = False,
    denylists: DenylistProvider | None = None,
    source_engine: Engine | None = None,
    target_engine: Engine | None = None,
) -> MigrationContext:
    """
    Build the context for one run of ``job``.

    Engines passed in are borrowed; engines created here are disposed by
    ``MigrationContext.close``. The source store is pinged so an unreachable
    source fails before any stage starts.
    """

    settings = MigrationSettings.from_job(job, config)
    owned: list[Engine] = []
    if source_engine is None:
        source_engine = create_store_engine(resolve_source_url(config, settings.source_db_name))
        owned.append(source_engine)
    if target_engine is None:
        target_engine = create_store_engine(resolve_target_url(config))
        owned.append(target_engine)

    source = SourceStore(source_engine, settings.source_prefix, batch_size=settings.batch_size)
    target = TargetStore(
        target_engine,
        settings.target_prefix,
        base_prefix=settings.target_base_prefix,
        batch_size=settings.batch_size,
    )
    context = MigrationContext(
        settings=settings,
        source=source,
        target=target,
        identity=IdentityMapper(
            settings.site_id,
            session=session,
            site_label=settings.site_label,
            fallback_user_id=settings.fallback_user_id,
        ),
        denylists=denylists or DenylistProvider.from_config(config),
        cleanup=CleanupPolicy(
            environment=settings.environment,
            force=force,
            enabled=settings.clean_unused_data,
        ),
        owned_engines=tuple(owned),
    )
    try:
        source.ping()
    except Exception:
        context.close()
        raise
    logger.debug(
        "Built migration context for site %s (%s -> %s)",
        settings.site_id,
        settings.source_prefix,
        settings.target_prefix,
        extra={"migrator_site_id": settings.site_id},
    )
    return context
