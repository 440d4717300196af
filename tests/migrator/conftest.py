from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import pytest
import sqlalchemy as sa

from migrate_app.migrator import init_migrator
from migrate_app.migrator.context import build_migration_context
from migrate_app.migrator.denylist import Denylist, DenylistProvider
from migrate_app.migrator.job_service import JobService
from migrate_app.migrator.stores import create_store_engine

SOURCE_DB_NAME = "legacy_site"
SOURCE_PREFIX = "wp_"
BASE_PREFIX = "wp_"
SITE_ID = 2
TARGET_PREFIX = "wp_2_"

SITE_TABLES = ("options", "posts", "postmeta", "terms", "term_taxonomy", "term_relationships")

POST_DATE = datetime(2023, 4, 1, 9, 30, 0)


def define_site_tables(metadata: sa.MetaData, prefix: str) -> None:
    """Per-site WordPress tables, trimmed to the columns the stages touch."""

    sa.Table(
        f"{prefix}options",
        metadata,
        sa.Column("option_id", sa.Integer, primary_key=True),
        sa.Column("option_name", sa.String(191), nullable=False, unique=True),
        sa.Column("option_value", sa.Text, nullable=False, server_default=""),
        sa.Column("autoload", sa.String(20), nullable=False, server_default="yes"),
    )
    sa.Table(
        f"{prefix}posts",
        metadata,
        sa.Column("ID", sa.Integer, primary_key=True),
        sa.Column("post_author", sa.Integer, nullable=False, server_default="0"),
        sa.Column("post_date", sa.DateTime, nullable=False),
        sa.Column("post_date_gmt", sa.DateTime, nullable=False),
        sa.Column("post_content", sa.Text, nullable=False, server_default=""),
        sa.Column("post_title", sa.Text, nullable=False, server_default=""),
        sa.Column("post_excerpt", sa.Text, nullable=False, server_default=""),
        sa.Column("post_status", sa.String(20), nullable=False, server_default="publish"),
        sa.Column("post_name", sa.String(200), nullable=False, server_default=""),
        sa.Column("post_modified", sa.DateTime, nullable=False),
        sa.Column("post_modified_gmt", sa.DateTime, nullable=False),
        sa.Column("post_parent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("guid", sa.String(255), nullable=False, server_default=""),
        sa.Column("post_type", sa.String(20), nullable=False, server_default="post"),
    )
    sa.Table(
        f"{prefix}postmeta",
        metadata,
        sa.Column("meta_id", sa.Integer, primary_key=True),
        sa.Column("post_id", sa.Integer, nullable=False, server_default="0"),
        sa.Column("meta_key", sa.String(255)),
        sa.Column("meta_value", sa.Text),
    )
    sa.Table(
        f"{prefix}terms",
        metadata,
        sa.Column("term_id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, server_default=""),
        sa.Column("slug", sa.String(200), nullable=False, server_default=""),
        sa.Column("term_group", sa.Integer, nullable=False, server_default="0"),
    )
    sa.Table(
        f"{prefix}term_taxonomy",
        metadata,
        sa.Column("term_taxonomy_id", sa.Integer, primary_key=True),
        sa.Column("term_id", sa.Integer, nullable=False, server_default="0"),
        sa.Column("taxonomy", sa.String(32), nullable=False, server_default=""),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("parent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("count", sa.Integer, nullable=False, server_default="0"),
    )
    sa.Table(
        f"{prefix}term_relationships",
        metadata,
        sa.Column("object_id", sa.Integer, primary_key=True),
        sa.Column("term_taxonomy_id", sa.Integer, primary_key=True),
        sa.Column("term_order", sa.Integer, nullable=False, server_default="0"),
    )


def define_user_tables(metadata: sa.MetaData, prefix: str) -> None:
    sa.Table(
        f"{prefix}users",
        metadata,
        sa.Column("ID", sa.Integer, primary_key=True),
        sa.Column("user_login", sa.String(60), nullable=False),
        sa.Column("user_pass", sa.String(255), nullable=False, server_default=""),
        sa.Column("user_nicename", sa.String(50), nullable=False, server_default=""),
        sa.Column("user_email", sa.String(100), nullable=False, server_default=""),
        sa.Column("user_url", sa.String(100), nullable=False, server_default=""),
        sa.Column("user_registered", sa.DateTime),
        sa.Column("user_activation_key", sa.String(255), nullable=False, server_default=""),
        sa.Column("user_status", sa.Integer, nullable=False, server_default="0"),
        sa.Column("display_name", sa.String(250), nullable=False, server_default=""),
    )
    sa.Table(
        f"{prefix}usermeta",
        metadata,
        sa.Column("umeta_id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, nullable=False, server_default="0"),
        sa.Column("meta_key", sa.String(255)),
        sa.Column("meta_value", sa.Text),
    )


def define_network_tables(metadata: sa.MetaData, base_prefix: str) -> None:
    define_user_tables(metadata, base_prefix)
    sa.Table(
        f"{base_prefix}blogs",
        metadata,
        sa.Column("blog_id", sa.Integer, primary_key=True),
        sa.Column("domain", sa.String(200), nullable=False, server_default=""),
        sa.Column("path", sa.String(100), nullable=False, server_default="/"),
    )


def post_row(post_id: int, author: int, *, title: str | None = None, post_type: str = "post") -> dict:
    return {
        "ID": post_id,
        "post_author": author,
        "post_date": POST_DATE,
        "post_date_gmt": POST_DATE,
        "post_modified": POST_DATE,
        "post_modified_gmt": POST_DATE,
        "post_title": title or f"Post {post_id}",
        "post_name": f"post-{post_id}",
        "post_content": f"Body of post {post_id}",
        "guid": f"https://legacy.example/?p={post_id}",
        "post_type": post_type,
    }


@dataclass
class WordPressDatabases:
    """Source single-site and target network databases backed by SQLite files."""

    site_id = SITE_ID
    source_db_name = SOURCE_DB_NAME
    source_prefix = SOURCE_PREFIX
    base_prefix = BASE_PREFIX
    target_prefix = TARGET_PREFIX

    source_engine: sa.Engine
    target_engine: sa.Engine
    source_url_template: str
    target_url: str

    def insert(self, engine: sa.Engine, table: str, *rows: dict) -> None:
        reflected = sa.Table(table, sa.MetaData(), autoload_with=engine)
        with engine.begin() as conn:
            for row in rows:
                conn.execute(reflected.insert().values(**row))

    def insert_source(self, table: str, *rows: dict) -> None:
        self.insert(self.source_engine, f"{SOURCE_PREFIX}{table}", *rows)

    def insert_target(self, table: str, *rows: dict) -> None:
        self.insert(self.target_engine, table, *rows)

    def fetch(self, engine: sa.Engine, sql: str, **params) -> list[dict]:
        with engine.connect() as conn:
            return [dict(row) for row in conn.execute(sa.text(sql), params).mappings()]

    def target_rows(self, sql: str, **params) -> list[dict]:
        return self.fetch(self.target_engine, sql, **params)

    def source_rows(self, sql: str, **params) -> list[dict]:
        return self.fetch(self.source_engine, sql, **params)

    def target_tables(self) -> list[str]:
        return sa.inspect(self.target_engine).get_table_names()

    def target_columns(self, table: str) -> list[str]:
        return [column["name"] for column in sa.inspect(self.target_engine).get_columns(table)]


@pytest.fixture
def wp(tmp_path: Path):
    source_path = tmp_path / f"{SOURCE_DB_NAME}.db"
    target_path = tmp_path / "network.db"
    source_engine = create_store_engine(f"sqlite:///{source_path.as_posix()}")
    target_engine = create_store_engine(f"sqlite:///{target_path.as_posix()}")

    source_metadata = sa.MetaData()
    define_user_tables(source_metadata, SOURCE_PREFIX)
    define_site_tables(source_metadata, SOURCE_PREFIX)
    source_metadata.create_all(source_engine)

    target_metadata = sa.MetaData()
    define_network_tables(target_metadata, BASE_PREFIX)
    define_site_tables(target_metadata, BASE_PREFIX)
    define_site_tables(target_metadata, TARGET_PREFIX)
    target_metadata.create_all(target_engine)

    databases = WordPressDatabases(
        source_engine=source_engine,
        target_engine=target_engine,
        source_url_template=f"sqlite:///{tmp_path.as_posix()}/{{db_name}}.db",
        target_url=f"sqlite:///{target_path.as_posix()}",
    )
    databases.insert_target(
        f"{BASE_PREFIX}users",
        {"ID": 1, "user_login": "admin", "user_email": "admin@network.test", "display_name": "Network Admin"},
    )
    databases.insert_target(
        f"{TARGET_PREFIX}options",
        {"option_name": "siteurl", "option_value": "https://network.test/site-two"},
        {"option_name": "home", "option_value": "https://network.test/site-two"},
        {"option_name": "blogname", "option_value": "Site Two"},
        {"option_name": "admin_email", "option_value": "admin@network.test"},
    )
    yield databases
    source_engine.dispose()
    target_engine.dispose()


@pytest.fixture
def migrator_app(app, wp):
    app.config.update(
        {
            "MIGRATOR_ENABLED": True,
            "MIGRATOR_SOURCE_DATABASE_URL": wp.source_url_template,
            "MIGRATOR_TARGET_DATABASE_URL": wp.target_url,
            "MIGRATOR_UNUSED_USERMETA_PATH": None,
            "MIGRATOR_UNUSED_POSTMETA_PATH": None,
            "MIGRATOR_UNUSED_OPTIONS_PATH": None,
        }
    )
    init_migrator(app)
    yield app


@pytest.fixture
def job_factory(migrator_app):
    def _factory(**overrides):
        values = {
            "site_id": SITE_ID,
            "source_db_name": SOURCE_DB_NAME,
            "source_prefix": SOURCE_PREFIX,
            "site_label": "Legacy Site",
        }
        values.update(overrides)
        return JobService(base_prefix=BASE_PREFIX).create_job(**values)

    return _factory


@pytest.fixture
def context_factory(migrator_app, wp):
    """Build migration contexts on the test engines with optional denylists."""

    opened = []

    def _factory(job, *, force: bool = False, denylists: DenylistProvider | None = None, **config_overrides):
        config = dict(migrator_app.config)
        config.update(config_overrides)
        context = build_migration_context(
            job,
            config,
            force=force,
            denylists=denylists or DenylistProvider(),
            source_engine=wp.source_engine,
            target_engine=wp.target_engine,
        )
        opened.append(context)
        return context

    yield _factory
    for context in opened:
        context.close()


def denylists(*, usermeta=(), postmeta=(), options=()) -> DenylistProvider:
    return DenylistProvider(
        usermeta=Denylist.from_entries(usermeta),
        postmeta=Denylist.from_entries(postmeta),
        options=Denylist.from_entries(options),
    )


@pytest.fixture
def make_denylists():
    return denylists


@pytest.fixture
def make_post():
    return post_row
