"""
SQLite Metadata Store
"""
from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional

from ..models import (
    AIDescription,
    AnalysisStatus,
    Column,
    DataSource,
    Environment,
    HealthStatus,
    Relationship,
    RelationshipKey,
    Table,
    utcnow,
)
from ..utils import DependentRecordsError, RecordNotFoundError, get_logger
from .base import UNSET, MetadataStore

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS data_sources (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    engine TEXT NOT NULL,
    connection TEXT NOT NULL,
    credentials_key TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS environments (
    id TEXT PRIMARY KEY,
    data_source_id TEXT NOT NULL REFERENCES data_sources(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    connection TEXT NOT NULL,
    credentials_key TEXT,
    custom_prompt TEXT,
    health_status TEXT NOT NULL,
    last_checked_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tables (
    id TEXT PRIMARY KEY,
    environment_id TEXT NOT NULL REFERENCES environments(id),
    name TEXT NOT NULL,
    schema_name TEXT,
    description TEXT,
    analysis_status TEXT NOT NULL,
    analysis_result TEXT,
    row_count INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS columns (
    id TEXT PRIMARY KEY,
    table_id TEXT NOT NULL REFERENCES tables(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    data_type TEXT NOT NULL,
    is_nullable INTEGER NOT NULL,
    is_primary_key INTEGER NOT NULL,
    is_foreign_key INTEGER NOT NULL,
    referenced_table TEXT,
    referenced_column TEXT,
    comment TEXT,
    ordinal_position INTEGER,
    ai_description TEXT
);

CREATE TABLE IF NOT EXISTS relationships (
    id TEXT PRIMARY KEY,
    environment_id TEXT NOT NULL REFERENCES environments(id),
    source_table_id TEXT NOT NULL REFERENCES tables(id) ON DELETE CASCADE,
    source_column TEXT NOT NULL,
    target_table_id TEXT NOT NULL REFERENCES tables(id) ON DELETE CASCADE,
    target_column TEXT NOT NULL,
    kind TEXT NOT NULL,
    confidence REAL,
    description TEXT,
    example TEXT,
    is_verified INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE (environment_id, source_table_id, target_table_id, source_column, target_column)
);

CREATE INDEX IF NOT EXISTS idx_tables_environment ON tables(environment_id);
CREATE INDEX IF NOT EXISTS idx_tables_status ON tables(analysis_status);
CREATE INDEX IF NOT EXISTS idx_columns_table ON columns(table_id);
"""


def _dump(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _load(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SqliteMetadataStore(MetadataStore):
    """
    SQLite-backed store

    One connection is shared across threads and serialized by a lock.
    Relationship uniqueness is enforced by a UNIQUE constraint.
    """

    def __init__(self, path: str = ":memory:", timeout: float = 30.0):
        self.path = path
        self._lock = threading.RLock()
        self._depth = 0
        self._connection = sqlite3.connect(
            path,
            timeout=timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")
        self._connection.executescript(SCHEMA)
        logger.debug(f"Opened metadata store at {path}")

    def close(self) -> None:
        with self._lock:
            self._connection.close()

    @contextmanager
    def transaction(self) -> Generator["SqliteMetadataStore", None, None]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._connection.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._connection.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._connection.execute("COMMIT")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._connection.execute(sql, params)

    def _one(self, sql: str, params: tuple, entity: str, record_id: str) -> sqlite3.Row:
        with self._lock:
            row = self._connection.execute(sql, params).fetchone()
        if row is None:
            raise RecordNotFoundError(entity, record_id)
        return row

    # Row mapping

    @staticmethod
    def _data_source(row: sqlite3.Row) -> DataSource:
        return DataSource.from_dict({
            "id": row["id"],
            "name": row["name"],
            "engine": row["engine"],
            "connection": _load(row["connection"]),
            "credentials_key": row["credentials_key"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        })

    @staticmethod
    def _environment(row: sqlite3.Row) -> Environment:
        return Environment.from_dict({
            "id": row["id"],
            "data_source_id": row["data_source_id"],
            "name": row["name"],
            "connection": _load(row["connection"]),
            "credentials_key": row["credentials_key"],
            "custom_prompt": row["custom_prompt"],
            "health_status": row["health_status"],
            "last_checked_at": row["last_checked_at"],
            "created_at": row["created_at"],
        })

    @staticmethod
    def _table(row: sqlite3.Row) -> Table:
        return Table.from_dict({
            "id": row["id"],
            "environment_id": row["environment_id"],
            "name": row["name"],
            "schema": row["schema_name"],
            "description": row["description"],
            "analysis_status": row["analysis_status"],
            "analysis_result": _load(row["analysis_result"]),
            "row_count": row["row_count"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        })

    @staticmethod
    def _column(row: sqlite3.Row) -> Column:
        data = dict(row)
        data["ai_description"] = _load(row["ai_description"])
        return Column.from_dict(data)

    @staticmethod
    def _relationship(row: sqlite3.Row) -> Relationship:
        return Relationship.from_dict(dict(row))

    # Data sources

    def create_data_source(self, data_source: DataSource) -> DataSource:
        self._execute(
            "INSERT INTO data_sources (id, name, engine, connection, credentials_key, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                data_source.id, data_source.name, data_source.engine.value,
                _dump(data_source.connection), data_source.credentials_key,
                _iso(data_source.created_at), _iso(data_source.updated_at),
            ),
        )
        return data_source

    def get_data_source(self, data_source_id: str) -> DataSource:
        row = self._one("SELECT * FROM data_sources WHERE id = ?", (data_source_id,), "DataSource", data_source_id)
        return self._data_source(row)

    def list_data_sources(self) -> List[DataSource]:
        rows = self._execute("SELECT * FROM data_sources ORDER BY name").fetchall()
        return [self._data_source(r) for r in rows]

    def update_data_source(self, data_source: DataSource) -> DataSource:
        data_source.updated_at = utcnow()
        cursor = self._execute(
            "UPDATE data_sources SET name = ?, engine = ?, connection = ?, credentials_key = ?, updated_at = ? "
            "WHERE id = ?",
            (
                data_source.name, data_source.engine.value, _dump(data_source.connection),
                data_source.credentials_key, _iso(data_source.updated_at), data_source.id,
            ),
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError("DataSource", data_source.id)
        return data_source

    def delete_data_source(self, data_source_id: str) -> None:
        with self.transaction():
            self.get_data_source(data_source_id)
            row = self._execute(
                "SELECT COUNT(*) FROM tables t JOIN environments e ON e.id = t.environment_id "
                "WHERE e.data_source_id = ?",
                (data_source_id,),
            ).fetchone()
            if row[0]:
                raise DependentRecordsError("DataSource", data_source_id, "tables")
            self._execute("DELETE FROM data_sources WHERE id = ?", (data_source_id,))

    # Environments

    def create_environment(self, environment: Environment) -> Environment:
        self.get_data_source(environment.data_source_id)
        self._execute(
            "INSERT INTO environments (id, data_source_id, name, connection, credentials_key, custom_prompt, "
            "health_status, last_checked_at, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                environment.id, environment.data_source_id, environment.name,
                _dump(environment.connection), environment.credentials_key,
                environment.custom_prompt,
                environment.health_status.value, _iso(environment.last_checked_at),
                _iso(environment.created_at),
            ),
        )
        return environment

    def get_environment(self, environment_id: str) -> Environment:
        row = self._one("SELECT * FROM environments WHERE id = ?", (environment_id,), "Environment", environment_id)
        return self._environment(row)

    def list_environments(self, data_source_id: str) -> List[Environment]:
        rows = self._execute(
            "SELECT * FROM environments WHERE data_source_id = ? ORDER BY name", (data_source_id,)
        ).fetchall()
        return [self._environment(r) for r in rows]

    def update_environment_health(
        self,
        environment_id: str,
        status: HealthStatus,
        checked_at: datetime,
    ) -> Environment:
        cursor = self._execute(
            "UPDATE environments SET health_status = ?, last_checked_at = ? WHERE id = ?",
            (status.value, _iso(checked_at), environment_id),
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError("Environment", environment_id)
        return self.get_environment(environment_id)

    # Tables

    def create_table(self, table: Table, columns: Optional[List[Column]] = None) -> Table:
        with self.transaction():
            self.get_environment(table.environment_id)
            self._execute(
                "INSERT INTO tables (id, environment_id, name, schema_name, description, analysis_status, "
                "analysis_result, row_count, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    table.id, table.environment_id, table.name, table.schema, table.description,
                    table.analysis_status.value, _dump(table.analysis_result), table.row_count,
                    _iso(table.created_at), _iso(table.updated_at),
                ),
            )
            for column in columns or []:
                column.table_id = table.id
                self._insert_column(column)
        return table

    def _insert_column(self, column: Column) -> None:
        self._execute(
            "INSERT INTO columns (id, table_id, name, data_type, is_nullable, is_primary_key, is_foreign_key, "
            "referenced_table, referenced_column, comment, ordinal_position, ai_description) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                column.id, column.table_id, column.name, column.data_type,
                int(column.is_nullable), int(column.is_primary_key), int(column.is_foreign_key),
                column.referenced_table, column.referenced_column, column.comment,
                column.ordinal_position,
                _dump(column.ai_description.to_dict()) if column.ai_description else None,
            ),
        )

    def get_table(self, table_id: str) -> Table:
        return self._table(self._one("SELECT * FROM tables WHERE id = ?", (table_id,), "Table", table_id))

    def find_table(self, environment_id: str, name: str, schema: Optional[str] = None) -> Optional[Table]:
        row = self._execute(
            "SELECT * FROM tables WHERE environment_id = ? AND name = ? AND schema_name IS ?",
            (environment_id, name, schema),
        ).fetchone()
        return self._table(row) if row else None

    def list_tables(self, environment_id: str) -> List[Table]:
        rows = self._execute(
            "SELECT * FROM tables WHERE environment_id = ? ORDER BY COALESCE(schema_name, ''), name",
            (environment_id,),
        ).fetchall()
        return [self._table(r) for r in rows]

    def list_tables_by_status(self, status: AnalysisStatus) -> List[Table]:
        rows = self._execute("SELECT * FROM tables WHERE analysis_status = ?", (status.value,)).fetchall()
        return [self._table(r) for r in rows]

    def update_table_analysis(
        self,
        table_id: str,
        status: AnalysisStatus,
        result: Any = UNSET,
        description: Any = UNSET,
    ) -> Table:
        assignments = ["analysis_status = ?", "updated_at = ?"]
        params: List[Any] = [status.value, _iso(utcnow())]
        if result is not UNSET:
            assignments.append("analysis_result = ?")
            params.append(_dump(result))
        if description is not UNSET:
            assignments.append("description = ?")
            params.append(description)
        params.append(table_id)

        cursor = self._execute(f"UPDATE tables SET {', '.join(assignments)} WHERE id = ?", tuple(params))
        if cursor.rowcount == 0:
            raise RecordNotFoundError("Table", table_id)
        return self.get_table(table_id)

    def delete_table(self, table_id: str) -> None:
        with self.transaction():
            self.get_table(table_id)
            self._execute(
                "DELETE FROM relationships WHERE source_table_id = ? OR target_table_id = ?",
                (table_id, table_id),
            )
            self._execute("DELETE FROM columns WHERE table_id = ?", (table_id,))
            self._execute("DELETE FROM tables WHERE id = ?", (table_id,))

    # Columns

    def list_columns(self, table_id: str) -> List[Column]:
        rows = self._execute(
            "SELECT * FROM columns WHERE table_id = ? "
            "ORDER BY ordinal_position IS NULL, ordinal_position, name",
            (table_id,),
        ).fetchall()
        return [self._column(r) for r in rows]

    def update_column_description(self, column_id: str, description: Optional[AIDescription]) -> Column:
        cursor = self._execute(
            "UPDATE columns SET ai_description = ? WHERE id = ?",
            (_dump(description.to_dict()) if description else None, column_id),
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError("Column", column_id)
        row = self._one("SELECT * FROM columns WHERE id = ?", (column_id,), "Column", column_id)
        return self._column(row)

    # Relationships

    def create_relationship_if_absent(self, relationship: Relationship) -> Optional[Relationship]:
        cursor = self._execute(
            "INSERT OR IGNORE INTO relationships (id, environment_id, source_table_id, source_column, "
            "target_table_id, target_column, kind, confidence, description, example, is_verified, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                relationship.id, relationship.environment_id,
                relationship.source_table_id, relationship.source_column,
                relationship.target_table_id, relationship.target_column,
                relationship.kind.value, relationship.confidence,
                relationship.description, relationship.example,
                int(relationship.is_verified), _iso(relationship.created_at),
            ),
        )
        return relationship if cursor.rowcount == 1 else None

    def find_relationship(self, key: RelationshipKey) -> Optional[Relationship]:
        row = self._execute(
            "SELECT * FROM relationships WHERE environment_id = ? AND source_table_id = ? "
            "AND target_table_id = ? AND source_column = ? AND target_column = ?",
            key,
        ).fetchone()
        return self._relationship(row) if row else None

    def list_relationships(self, environment_id: str) -> List[Relationship]:
        rows = self._execute(
            "SELECT * FROM relationships WHERE environment_id = ? ORDER BY created_at", (environment_id,)
        ).fetchall()
        return [self._relationship(r) for r in rows]

    def set_relationship_verified(self, relationship_id: str, verified: bool) -> Relationship:
        cursor = self._execute(
            "UPDATE relationships SET is_verified = ? WHERE id = ?", (int(verified), relationship_id)
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError("Relationship", relationship_id)
        row = self._one(
            "SELECT * FROM relationships WHERE id = ?", (relationship_id,), "Relationship", relationship_id
        )
        return self._relationship(row)
