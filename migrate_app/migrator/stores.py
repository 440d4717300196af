"""
Explicit handles on the source (single-site) and target (network) databases.

Stages never switch an ambient connection: every read goes through a
``SourceStore`` and every write through a ``TargetStore``. Both wrap an
SQLAlchemy engine plus the table-namespace prefix for their side of the
migration, reflect WordPress tables on demand, and translate storage-layer
failures into ``BulkOperationError``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Sequence

from sqlalchemy import Engine, MetaData, Table, and_, create_engine, delete, func, insert, inspect, select, text, update
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from .errors import BulkOperationError, SourceUnavailableError
from .wordpress import CORE_TABLES

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


def create_store_engine(url: str, **options: Any) -> Engine:
    """Create an engine for a WordPress database URL."""

    engine_options: dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        engine_options["connect_args"] = {"check_same_thread": False, "timeout": 5}
    engine_options.update(options)
    return create_engine(url, **engine_options)


class WordPressStore:
    """Common table access for one side of the migration."""

    role = "store"

    def __init__(self, engine: Engine, prefix: str, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.engine = engine
        self.prefix = prefix
        self.batch_size = max(1, int(batch_size))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} prefix={self.prefix!r} url={self.engine.url!r}>"

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def table_name(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def quote(self, identifier: str) -> str:
        return self.engine.dialect.identifier_preparer.quote(identifier)

    @contextmanager
    def storage_errors(self, *, stage: str | None = None, table: str | None = None) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            raise BulkOperationError(
                f"{self.role} operation failed on {table or 'database'}: {exc}",
                stage=stage,
                table=table,
            ) from exc

    def reflect(self, full_name: str) -> Table:
        """Reflect a table by its full (already prefixed) name."""

        try:
            return Table(full_name, MetaData(), autoload_with=self.engine)
        except NoSuchTableError as exc:
            raise BulkOperationError(f"Table {full_name} does not exist in the {self.role}.", table=full_name) from exc

    def table(self, name: str) -> Table:
        return self.reflect(self.table_name(name))

    def has_table(self, full_name: str) -> bool:
        return inspect(self.engine).has_table(full_name)

    def column_names(self, full_name: str) -> list[str]:
        return [column["name"] for column in inspect(self.engine).get_columns(full_name)]

    def prefixed_table_names(self) -> list[str]:
        return sorted(name for name in inspect(self.engine).get_table_names() if name.startswith(self.prefix))

    def extra_table_names(self) -> list[str]:
        """Tables under this store's prefix that are not WordPress core tables."""

        return [
            name for name in self.prefixed_table_names() if name[len(self.prefix):] not in CORE_TABLES
        ]

    def iter_batches(self, statement) -> Iterator[list[dict[str, Any]]]:
        """Stream ``statement`` results as lists of row dicts of at most ``batch_size`` rows."""

        with self.engine.connect() as conn:
            if self.engine.dialect.supports_server_side_cursors:
                conn = conn.execution_options(stream_results=True)
            result = conn.execute(statement)
            for partition in result.mappings().partitions(self.batch_size):
                yield [dict(row) for row in partition]

    def fetch_all(self, statement) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(statement).mappings()]

    def scalars(self, statement) -> list[Any]:
        with self.engine.connect() as conn:
            return list(conn.execute(statement).scalars())

    def count(self, table: Table) -> int:
        with self.engine.connect() as conn:
            return int(conn.execute(select(func.count()).select_from(table)).scalar_one())

    def execute(
        self,
        statement,
        *,
        params: Mapping[str, Any] | None = None,
        stage: str | None = None,
        table: str | None = None,
    ) -> int:
        """Run a write statement in its own transaction and return the affected row count."""

        with self.storage_errors(stage=stage, table=table):
            with self.engine.begin() as conn:
                result = conn.execute(statement, dict(params or {}))
                return max(result.rowcount or 0, 0)


class SourceStore(WordPressStore):
    """Read handle on the isolated single-site database."""

    role = "source"

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise SourceUnavailableError(f"Source database {self.engine.url!r} is unreachable: {exc}") from exc


class TargetStore(WordPressStore):
    """Write handle on the shared network database."""

    role = "target"

    def __init__(
        self,
        engine: Engine,
        prefix: str,
        *,
        base_prefix: str = "wp_",
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        super().__init__(engine, prefix, batch_size=batch_size)
        self.base_prefix = base_prefix

    def network_table_name(self, name: str) -> str:
        return f"{self.base_prefix}{name}"

    def network_table(self, name: str) -> Table:
        return self.reflect(self.network_table_name(name))

    def insert_row(self, table: Table, values: Mapping[str, Any], *, stage: str | None = None) -> Any:
        """Insert one row and return its generated primary key."""

        with self.storage_errors(stage=stage, table=table.name):
            with self.engine.begin() as conn:
                result = conn.execute(insert(table).values(**values))
                primary_key = result.inserted_primary_key
                return primary_key[0] if primary_key else None

    def upsert_rows(
        self,
        table: Table,
        rows: Sequence[Mapping[str, Any]],
        *,
        stage: str | None = None,
    ) -> int:
        """
        Insert ``rows`` into ``table``, replacing rows that share a primary key.

        Columns missing from the target table are dropped. Tables without a
        primary key receive plain inserts.
        """

        if not rows:
            return 0
        columns = set(table.c.keys())
        payload = [{key: value for key, value in row.items() if key in columns} for row in rows]
        keys = list(payload[0].keys())
        primary_key = [column.name for column in table.primary_key.columns]

        with self.storage_errors(stage=stage, table=table.name):
            with self.engine.begin() as conn:
                if not primary_key:
                    conn.execute(insert(table), payload)
                else:
                    self._upsert(conn, table, payload, keys, primary_key)
        return len(payload)

    def _upsert(self, conn, table: Table, payload, keys: list[str], primary_key: list[str]) -> None:
        update_columns = [key for key in keys if key not in primary_key]
        dialect = self.dialect
        if dialect in ("sqlite", "postgresql"):
            if dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert as dialect_insert
            else:
                from sqlalchemy.dialects.postgresql import insert as dialect_insert
            statement = dialect_insert(table)
            if update_columns:
                statement = statement.on_conflict_do_update(
                    index_elements=primary_key,
                    set_={key: statement.excluded[key] for key in update_columns},
                )
            else:
                statement = statement.on_conflict_do_nothing(index_elements=primary_key)
            conn.execute(statement, payload)
        elif dialect in ("mysql", "mariadb"):
            from sqlalchemy.dialects.mysql import insert as mysql_insert

            statement = mysql_insert(table)
            if update_columns:
                statement = statement.on_duplicate_key_update(
                    {key: statement.inserted[key] for key in update_columns}
                )
            else:
                statement = statement.prefix_with("IGNORE")
            conn.execute(statement, payload)
        else:
            for row in payload:
                conn.execute(delete(table).where(and_(*(table.c[key] == row[key] for key in primary_key))))
            conn.execute(insert(table), payload)

    def update_or_insert(
        self,
        table: Table,
        match: Mapping[str, Any],
        values: Mapping[str, Any],
        *,
        stage: str | None = None,
    ) -> str:
        """Update rows matching ``match`` with ``values``; insert one when none match."""

        criteria = and_(*(table.c[key] == value for key, value in match.items()))
        with self.storage_errors(stage=stage, table=table.name):
            with self.engine.begin() as conn:
                result = conn.execute(update(table).where(criteria).values(**values))
                if result.rowcount:
                    return "updated"
                conn.execute(insert(table).values(**{**match, **values}))
                return "inserted"

    def delete_all(self, table: Table, *criteria, stage: str | None = None) -> int:
        statement = delete(table)
        if criteria:
            statement = statement.where(*criteria)
        return self.execute(statement, stage=stage, table=table.name)

    def drop_table(self, full_name: str, *, stage: str | None = None) -> None:
        self.execute(text(f"DROP TABLE IF EXISTS {self.quote(full_name)}"), stage=stage, table=full_name)

    def add_column(self, full_name: str, column: str, ddl_type: str, *, stage: str | None = None) -> bool:
        """Add ``column`` when absent. Returns True when the column was created."""

        if column in self.column_names(full_name):
            return False
        self.execute(
            text(f"ALTER TABLE {self.quote(full_name)} ADD COLUMN {self.quote(column)} {ddl_type}"),
            stage=stage,
            table=full_name,
        )
        return True

    def drop_column(self, full_name: str, column: str, *, stage: str | None = None) -> bool:
        if column not in self.column_names(full_name):
            return False
        self.execute(
            text(f"ALTER TABLE {self.quote(full_name)} DROP COLUMN {self.quote(column)}"),
            stage=stage,
            table=full_name,
        )
        return True
