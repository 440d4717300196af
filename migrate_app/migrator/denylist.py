"""
Denylists of metadata/option keys that are not carried into the target site.

Each entry is an exact key (``comment_shortcuts``) or a prefix pattern ending
in ``%`` (``closedpostboxes_%``). ``_`` is treated literally, so the SQL
filters escape it before handing patterns to ``LIKE``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml
from sqlalchemy import ColumnElement

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

WILDCARD = "%"
LIKE_ESCAPE = "\\"


@dataclass(frozen=True)
class Denylist:
    """Exact keys plus prefix patterns for one key family."""

    exact: frozenset[str] = field(default_factory=frozenset)
    prefixes: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_entries(cls, entries: Iterable[str]) -> "Denylist":
        exact: set[str] = set()
        prefixes: set[str] = set()
        for raw in entries:
            entry = str(raw).strip()
            if not entry:
                continue
            if WILDCARD in entry:
                # Only trailing wildcards are meaningful; anything after the first % is dropped.
                prefixes.add(entry.split(WILDCARD, 1)[0])
            else:
                exact.add(entry)
        return cls(exact=frozenset(exact), prefixes=frozenset(prefixes))

    def __bool__(self) -> bool:
        return bool(self.exact or self.prefixes)

    def excludes(self, key: str) -> bool:
        if key in self.exact:
            return True
        return any(key.startswith(prefix) for prefix in self.prefixes)

    def filter_keys(self, keys: Iterable[str]) -> list[str]:
        return [key for key in keys if not self.excludes(key)]

    def exclusion_clauses(self, column: ColumnElement) -> list[ColumnElement]:
        """WHERE clauses keeping only rows whose ``column`` is not denylisted."""

        clauses: list[ColumnElement] = []
        if self.exact:
            clauses.append(column.not_in(sorted(self.exact)))
        for prefix in sorted(self.prefixes):
            clauses.append(~column.like(_escape_like(prefix) + WILDCARD, escape=LIKE_ESCAPE))
        return clauses


def _escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


@dataclass(frozen=True)
class DenylistProvider:
    """The three key denylists, loaded once when a migration context is built."""

    usermeta: Denylist = field(default_factory=Denylist)
    postmeta: Denylist = field(default_factory=Denylist)
    options: Denylist = field(default_factory=Denylist)

    @classmethod
    def from_paths(
        cls,
        *,
        usermeta_path: str | Path | None = None,
        postmeta_path: str | Path | None = None,
        options_path: str | Path | None = None,
    ) -> "DenylistProvider":
        return cls(
            usermeta=load_denylist(usermeta_path),
            postmeta=load_denylist(postmeta_path),
            options=load_denylist(options_path),
        )

    @classmethod
    def from_config(cls, config: Any) -> "DenylistProvider":
        return cls.from_paths(
            usermeta_path=config.get("MIGRATOR_UNUSED_USERMETA_PATH"),
            postmeta_path=config.get("MIGRATOR_UNUSED_POSTMETA_PATH"),
            options_path=config.get("MIGRATOR_UNUSED_OPTIONS_PATH"),
        )


def load_denylist(path: str | Path | None) -> Denylist:
    """
    Load a YAML denylist file.

    The document may be a plain list or a mapping with a ``keys`` list. A
    missing path or file means no exclusions.
    """

    if not path:
        return Denylist()
    file_path = Path(path)
    if not file_path.exists():
        logger.debug("Denylist file %s not found; no exclusions applied.", file_path)
        return Denylist()

    try:
        document = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Denylist file {file_path} is not valid YAML: {exc}") from exc

    if document is None:
        return Denylist()
    if isinstance(document, dict):
        document = document.get("keys") or []
    if not isinstance(document, list):
        raise ConfigurationError(f"Denylist file {file_path} must contain a list of keys.")
    return Denylist.from_entries(document)
