from __future__ import annotations

import pytest
import sqlalchemy as sa

from migrate_app.migrator.stages.extra_tables import migrate_extra_tables


@pytest.fixture
def plugin_table(wp):
    metadata = sa.MetaData()
    sa.Table(
        "wp_redirects",
        metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("source_path", sa.String(255), nullable=False),
        sa.Column("target_path", sa.String(255), nullable=False),
        sa.Index("wp_redirects_source_idx", "source_path"),
    )
    metadata.create_all(wp.source_engine)
    wp.insert_source(
        "redirects",
        {"id": 1, "source_path": "/old", "target_path": "/new"},
        {"id": 2, "source_path": "/legacy", "target_path": "/"},
        {"id": 3, "source_path": "/a", "target_path": "/b"},
    )
    return wp


def test_extra_tables_are_recreated_and_copied(plugin_table, job_factory, context_factory):
    wp = plugin_table
    context = context_factory(job_factory(migrate_extra_tables=True))

    result = migrate_extra_tables(context)

    assert "wp_2_redirects" in wp.target_tables()
    rows = wp.target_rows("SELECT id, source_path, target_path FROM wp_2_redirects ORDER BY id")
    assert [row["source_path"] for row in rows] == ["/old", "/legacy", "/a"]
    index_names = {index["name"] for index in sa.inspect(wp.target_engine).get_indexes("wp_2_redirects")}
    assert index_names == {"wp_2_redirects_source_idx"}
    assert result.rows_processed == 1
    assert result.counts["tables_created"] == 1
    assert result.counts["rows_copied"] == 3


def test_extra_tables_rerun_reuses_table(plugin_table, job_factory, context_factory):
    wp = plugin_table
    job = job_factory(migrate_extra_tables=True)
    migrate_extra_tables(context_factory(job))

    result = migrate_extra_tables(context_factory(job))

    assert "tables_created" not in result.counts
    assert wp.target_rows("SELECT COUNT(*) AS total FROM wp_2_redirects")[0]["total"] == 3


def test_extra_tables_skipped_when_flag_off(plugin_table, job_factory, context_factory):
    wp = plugin_table
    result = migrate_extra_tables(context_factory(job_factory(migrate_extra_tables=False)))

    assert result.skipped is True
    assert result.warnings
    assert "wp_2_redirects" not in wp.target_tables()


def test_extra_table_without_primary_key_is_replaced_on_rerun(wp, job_factory, context_factory):
    metadata = sa.MetaData()
    sa.Table("wp_activity_log", metadata, sa.Column("message", sa.String(255), nullable=False))
    metadata.create_all(wp.source_engine)
    wp.insert_source("activity_log", {"message": "plugin activated"}, {"message": "settings saved"})
    job = job_factory(migrate_extra_tables=True)

    migrate_extra_tables(context_factory(job))
    result = migrate_extra_tables(context_factory(job))

    messages = [row["message"] for row in wp.target_rows("SELECT message FROM wp_2_activity_log ORDER BY message")]
    assert messages == ["plugin activated", "settings saved"]
    assert result.counts["tables_replaced"] == 1
    assert result.counts["rows_copied"] == 2
