from __future__ import annotations

import pytest
import sqlalchemy as sa

from config.base import Config
from migrate_app.migrator.denylist import Denylist, DenylistProvider, load_denylist
from migrate_app.migrator.errors import ConfigurationError


def test_from_entries_splits_exact_and_prefix_patterns():
    denylist = Denylist.from_entries(["foo", "bar_%", "  ", "baz%qux"])
    assert denylist.exact == frozenset({"foo"})
    assert denylist.prefixes == frozenset({"bar_", "baz"})


def test_excludes_exact_and_prefix_keys():
    denylist = Denylist.from_entries(["foo", "bar_%"])
    assert denylist.excludes("foo")
    assert denylist.excludes("bar_x")
    assert not denylist.excludes("baz")
    assert not denylist.excludes("foobar")
    assert denylist.filter_keys(["foo", "bar_x", "baz"]) == ["baz"]


def test_empty_denylist_is_falsy_and_excludes_nothing():
    denylist = Denylist()
    assert not denylist
    assert denylist.exclusion_clauses(sa.column("meta_key")) == []
    assert denylist.filter_keys(["a", "b"]) == ["a", "b"]


def test_exclusion_clauses_treat_underscore_literally():
    engine = sa.create_engine("sqlite://")
    metadata = sa.MetaData()
    meta = sa.Table("meta", metadata, sa.Column("meta_key", sa.String(50)))
    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(meta.insert(), [{"meta_key": key} for key in ("foo", "bar_x", "barx", "baz")])

    denylist = Denylist.from_entries(["foo", "bar_%"])
    statement = sa.select(meta.c.meta_key).where(*denylist.exclusion_clauses(meta.c.meta_key)).order_by(meta.c.meta_key)
    with engine.connect() as conn:
        remaining = list(conn.execute(statement).scalars())

    # "barx" survives because "_" is not a single-character wildcard here.
    assert remaining == ["barx", "baz"]


def test_load_denylist_accepts_list_and_mapping(tmp_path):
    as_list = tmp_path / "list.yaml"
    as_list.write_text("- foo\n- bar_%\n")
    as_mapping = tmp_path / "mapping.yaml"
    as_mapping.write_text("keys:\n  - foo\n  - bar_%\n")

    assert load_denylist(as_list) == load_denylist(as_mapping)
    assert load_denylist(as_list).excludes("bar_anything")


def test_load_denylist_missing_file_means_no_exclusions(tmp_path):
    assert not load_denylist(tmp_path / "absent.yaml")
    assert not load_denylist(None)


def test_load_denylist_rejects_invalid_documents(tmp_path):
    bad_yaml = tmp_path / "bad.yaml"
    bad_yaml.write_text("keys: [unterminated\n")
    with pytest.raises(ConfigurationError):
        load_denylist(bad_yaml)

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just-a-string\n")
    with pytest.raises(ConfigurationError):
        load_denylist(scalar)


def test_provider_loads_bundled_denylists():
    provider = DenylistProvider.from_config(
        {
            "MIGRATOR_UNUSED_USERMETA_PATH": Config.MIGRATOR_UNUSED_USERMETA_PATH,
            "MIGRATOR_UNUSED_POSTMETA_PATH": Config.MIGRATOR_UNUSED_POSTMETA_PATH,
            "MIGRATOR_UNUSED_OPTIONS_PATH": Config.MIGRATOR_UNUSED_OPTIONS_PATH,
        }
    )
    assert provider.usermeta.excludes("session_tokens")
    assert provider.usermeta.excludes("closedpostboxes_dashboard")
    assert not provider.usermeta.excludes("first_name")
    assert not provider.postmeta
    assert not provider.options.excludes("active_plugins")
