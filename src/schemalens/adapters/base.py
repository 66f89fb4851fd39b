"""
Base Engine Adapter Module
Defines the engine-agnostic capability set using the Template Method pattern:
subclasses supply driver binding and catalog SQL, the base class supplies
listing, filtering, quoting and sampling policy.
"""
from __future__ import annotations

import json
import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Generator, List, Optional, Sequence, Tuple, Type

from ..config import (
    ConnectionConfig,
    DatabaseCredentials,
    EngineType,
    SchemaFilter,
    default_excluded_schemas,
)
from ..utils import (
    EngineConnectionError,
    PipelineMetrics,
    UnsupportedEngineError,
    classify_engine_error,
    get_logger,
)

logger = get_logger(__name__)

PERMISSION_ERROR_TABLE = "PERMISSION_ERROR"

# (sql, positional params)
CatalogQuery = Tuple[str, Sequence[Any]]


@dataclass
class TableMeta:
    """A table as reported by the engine's catalog"""
    name: str
    schema: Optional[str] = None
    description: Optional[str] = None
    row_count: Optional[int] = None

    @classmethod
    def permission_error(cls, description: str) -> "TableMeta":
        """Listing entry shown when the user can see no schemas at all"""
        return cls(
            name=PERMISSION_ERROR_TABLE,
            schema="system",
            description=description,
            row_count=0,
        )

    @property
    def is_permission_error(self) -> bool:
        return self.name == PERMISSION_ERROR_TABLE and self.schema == "system"

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema,
            "description": self.description,
            "row_count": self.row_count,
        }


@dataclass
class ColumnMeta:
    """A column as reported by the engine's catalog"""
    name: str
    data_type: str
    is_nullable: bool = True
    default_value: Optional[str] = None
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    ordinal_position: Optional[int] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    referenced_table: Optional[str] = None
    referenced_column: Optional[str] = None
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "data_type": self.data_type,
            "is_nullable": self.is_nullable,
            "default_value": self.default_value,
            "max_length": self.max_length,
            "precision": self.precision,
            "scale": self.scale,
            "ordinal_position": self.ordinal_position,
            "is_primary_key": self.is_primary_key,
            "is_foreign_key": self.is_foreign_key,
            "referenced_table": self.referenced_table,
            "referenced_column": self.referenced_column,
            "comment": self.comment,
        }


@dataclass
class QueryResult:
    """Result of a SQL statement"""
    success: bool
    columns: List[str] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)
    row_count: int = 0
    execution_time_ms: float = 0.0
    error_message: Optional[str] = None

    def as_dicts(self, lower_keys: bool = False) -> List[Dict[str, Any]]:
        names = [c.lower() for c in self.columns] if lower_keys else list(self.columns)
        return [dict(zip(names, row)) for row in self.rows]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "columns": self.columns,
            "rows": [list(row) for row in self.rows],
            "row_count": self.row_count,
            "execution_time_ms": self.execution_time_ms,
            "error_message": self.error_message,
        }


@dataclass
class ConnectionTestResult:
    """Outcome of a connection test"""
    success: bool
    message: str
    error: Optional[str] = None
    latency_ms: float = 0.0
    server_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "error": self.error,
            "latency_ms": self.latency_ms,
            "server_version": self.server_version,
        }


def stringify_value(value: Any) -> Optional[str]:
    """
    Render one sampled value as text for the reasoning service

    Dates (and timestamps) become YYYY-MM-DD, JSON-like values are serialized,
    binary is hex encoded. None stays None so callers can drop it.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dt_time):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def normalize_row(row: Dict[str, Any]) -> Dict[str, str]:
    """Stringify a sampled row, dropping null values"""
    normalized = {}
    for key, value in row.items():
        text = stringify_value(value)
        if text is not None:
            normalized[key] = text
    return normalized


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _decode_catalog_value(value: Any) -> Any:
    # some drivers hand back catalog text as bytes
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return value


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().upper() in ("YES", "Y", "TRUE", "1")
    return bool(value)


class BaseEngineAdapter(ABC):
    """
    Abstract base class for engine adapters

    One instance serves one operation: open a session, run catalog or sample
    queries, close. Connections are never pooled across requests.
    """

    quote_open = '"'
    quote_close = '"'
    health_check_sql = "SELECT 1"

    def __init__(
        self,
        config: ConnectionConfig,
        credentials: Optional[DatabaseCredentials] = None,
        large_table_threshold: int = 10000,
    ):
        self.config = config
        self.credentials = credentials or DatabaseCredentials()
        self.large_table_threshold = large_table_threshold
        self._connection = None
        self._lock = threading.Lock()

    @property
    @abstractmethod
    def engine_type(self) -> EngineType:
        """Return the engine kind"""
        pass

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Human readable engine name"""
        pass

    @abstractmethod
    def connect(self) -> None:
        """Open the driver connection"""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close the driver connection"""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    def execute_query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """Run one statement; driver errors are reported in the result, not raised"""
        pass

    @abstractmethod
    def _schemas_sql(self) -> CatalogQuery:
        """Query yielding a `schema_name` column"""
        pass

    @abstractmethod
    def _tables_sql(self) -> CatalogQuery:
        """Query yielding table_schema, table_name, description, row_count"""
        pass

    @abstractmethod
    def _columns_sql(self, table: str, schema: Optional[str]) -> CatalogQuery:
        """
        Query yielding column_name, data_type, is_nullable, column_default,
        max_length, numeric_precision, numeric_scale, ordinal_position,
        column_comment, is_primary_key
        """
        pass

    def _foreign_keys_sql(self, table: str, schema: Optional[str]) -> Optional[CatalogQuery]:
        """Query yielding column_name, referenced_table, referenced_column; None if unsupported"""
        return None

    @abstractmethod
    def _random_sample_sql(self, table_ref: str, limit: int) -> str:
        pass

    def _block_sample_sql(self, table_ref: str, limit: int) -> Optional[str]:
        """Engine-native block sampling for large tables; None if unsupported"""
        return None

    def _limit_sample_sql(self, table_ref: str, limit: int) -> str:
        return f"SELECT * FROM {table_ref} LIMIT {int(limit)}"

    def _server_version(self) -> Optional[str]:
        return None

    @property
    def default_schema(self) -> Optional[str]:
        """Schema assumed when a table is given without one"""
        return None

    @property
    def excluded_schemas(self) -> FrozenSet[str]:
        return default_excluded_schemas(self.engine_type)

    @property
    def username(self) -> str:
        return self.credentials.username or ""

    def permission_hint(self) -> str:
        """Explanation used for the zero-accessible-schemas listing entry"""
        return (
            f"Database user '{self.username}' lacks permissions to access schemas. "
            f"Contact your database administrator to grant read access to the catalog and tables."
        )

    # Identifier handling

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def qualify_table(self, table: str, schema: Optional[str] = None) -> str:
        """Quoted, schema-qualified reference to a table"""
        schema = schema or self.default_schema
        if schema:
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(table)}"
        return self.quote_identifier(table)

    # Session handling

    @contextmanager
    def session(self) -> Generator["BaseEngineAdapter", None, None]:
        """
        Open a connection for the duration of the block and always close it.
        Re-entrant: an already open connection is reused and left open.
        """
        opened_here = not self.is_connected()
        if opened_here:
            try:
                self.connect()
            except ImportError:
                raise
            except EngineConnectionError:
                raise
            except Exception as e:
                raise classify_engine_error(e, self.dialect_name) from e
        try:
            yield self
        finally:
            if opened_here:
                self.disconnect()

    def __enter__(self) -> "BaseEngineAdapter":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    def _fetch(self, query: CatalogQuery, kind: str = "catalog") -> List[Dict[str, Any]]:
        """Run a catalog query, raising EngineConnectionError on failure"""
        sql, params = query
        result = self.execute_query(sql, params or None)
        PipelineMetrics.record_engine_query(
            result.execution_time_ms / 1000, self.engine_type.value, kind, result.success
        )
        if not result.success:
            raise EngineConnectionError(
                f"{self.dialect_name} {kind} query failed: {result.error_message}",
                engine=self.engine_type.value,
                diagnostic=result.error_message,
            )
        return [
            {key: _decode_catalog_value(value) for key, value in row.items()}
            for row in result.as_dicts(lower_keys=True)
        ]

    # Capability set

    def test_connection(self) -> ConnectionTestResult:
        """Test connectivity; never raises for engine failures"""
        start = time.time()
        try:
            with self.session():
                result = self.execute_query(self.health_check_sql)
                version = self._server_version() if result.success else None
        except (EngineConnectionError, ImportError) as e:
            diagnostic = getattr(e, "diagnostic", None) or str(e)
            return ConnectionTestResult(
                success=False,
                message=f"{self.dialect_name} connection failed",
                error=diagnostic,
                latency_ms=(time.time() - start) * 1000,
            )

        latency_ms = (time.time() - start) * 1000
        if not result.success:
            return ConnectionTestResult(
                success=False,
                message=f"{self.dialect_name} query test failed",
                error=result.error_message,
                latency_ms=latency_ms,
            )
        return ConnectionTestResult(
            success=True,
            message=f"{self.dialect_name} connection successful",
            latency_ms=latency_ms,
            server_version=version,
        )

    def list_schemas(self, include_system: bool = False) -> List[str]:
        """Schemas visible to the connected user"""
        with self.session():
            rows = self._fetch(self._schemas_sql())
        schemas = [str(r["schema_name"]).strip() for r in rows if r.get("schema_name")]
        if include_system:
            return schemas
        hidden = {s.lower() for s in self.excluded_schemas}
        return [s for s in schemas if s.lower() not in hidden]

    def list_tables(self, schema_filter: Optional[SchemaFilter] = None) -> List[TableMeta]:
        """Base tables, filtered by the include / exclude schema rules"""
        schema_filter = schema_filter or self.config.schema_filter
        with self.session():
            rows = self._fetch(self._tables_sql())

        tables = []
        for row in rows:
            schema = row.get("table_schema")
            schema = str(schema).strip() if schema is not None else None
            if not schema_filter.allows(schema, self.excluded_schemas):
                continue
            row_count = _to_int(row.get("row_count"))
            tables.append(TableMeta(
                name=str(row["table_name"]).strip(),
                schema=schema,
                description=row.get("description") or None,
                # catalogs report -1 when statistics were never collected
                row_count=row_count if row_count is None or row_count >= 0 else None,
            ))
        return tables

    def list_columns(self, table: str, schema: Optional[str] = None) -> List[ColumnMeta]:
        """Normalized column metadata, including best-effort foreign keys"""
        with self.session():
            rows = self._fetch(self._columns_sql(table, schema))
            foreign_keys = self._fetch_foreign_keys(table, schema)

        columns = []
        for row in rows:
            name = str(row["column_name"]).strip()
            fk = foreign_keys.get(name)
            default = row.get("column_default")
            columns.append(ColumnMeta(
                name=name,
                data_type=str(row.get("data_type") or "unknown").strip(),
                is_nullable=_to_bool(row.get("is_nullable", True)),
                default_value=str(default) if default is not None else None,
                max_length=_to_int(row.get("max_length")),
                precision=_to_int(row.get("numeric_precision")),
                scale=_to_int(row.get("numeric_scale")),
                ordinal_position=_to_int(row.get("ordinal_position")),
                is_primary_key=_to_bool(row.get("is_primary_key") or False),
                is_foreign_key=fk is not None,
                referenced_table=fk[0] if fk else None,
                referenced_column=fk[1] if fk else None,
                comment=row.get("column_comment") or None,
            ))
        columns.sort(key=lambda c: (c.ordinal_position is None, c.ordinal_position or 0))
        return columns

    def _fetch_foreign_keys(self, table: str, schema: Optional[str]) -> Dict[str, Tuple[str, str]]:
        query = self._foreign_keys_sql(table, schema)
        if query is None:
            return {}
        try:
            rows = self._fetch(query, kind="foreign_keys")
        except EngineConnectionError as e:
            logger.debug(
                f"Foreign key lookup unavailable for {table}: {e.diagnostic}",
                extra={"extra_fields": {"engine": self.engine_type.value}}
            )
            return {}
        return {
            str(r["column_name"]).strip(): (str(r["referenced_table"]).strip(), str(r["referenced_column"]).strip())
            for r in rows
            if r.get("column_name") and r.get("referenced_table")
        }

    def count_rows(self, table: str, schema: Optional[str] = None) -> int:
        table_ref = self.qualify_table(table, schema)
        with self.session():
            rows = self._fetch((f"SELECT COUNT(*) AS row_count FROM {table_ref}", ()), kind="count")
        if not rows:
            return 0
        return _to_int(next(iter(rows[0].values()))) or 0

    def sample_rows(
        self,
        table: str,
        schema: Optional[str] = None,
        limit: int = 100,
        row_count: Optional[int] = None,
    ) -> List[Dict[str, str]]:
        """
        Randomized sample of at most `limit` rows, values stringified

        Small tables use an ORDER BY random scan; above the large table
        threshold the engine's block sampling is tried first. A plain LIMIT
        scan is the last resort for either.
        """
        limit = max(1, int(limit))
        table_ref = self.qualify_table(table, schema)

        with self.session():
            if row_count is None:
                row_count = self.count_rows(table, schema)

            strategies: List[Tuple[str, str]] = []
            block_sql = self._block_sample_sql(table_ref, limit) if row_count > self.large_table_threshold else None
            if block_sql:
                strategies.append(("block_sample", block_sql))
            else:
                strategies.append(("random_sample", self._random_sample_sql(table_ref, limit)))
            strategies.append(("limit_sample", self._limit_sample_sql(table_ref, limit)))

            last_error = None
            rows: Optional[List[Dict[str, Any]]] = None
            for kind, sql in strategies:
                result = self.execute_query(sql)
                PipelineMetrics.record_engine_query(
                    result.execution_time_ms / 1000, self.engine_type.value, kind, result.success
                )
                if result.success:
                    rows = result.as_dicts()
                    break
                last_error = result.error_message
                logger.warning(
                    f"{kind} failed on {table_ref}, trying next strategy",
                    extra={"extra_fields": {"engine": self.engine_type.value, "error": last_error}}
                )

        if rows is None:
            raise EngineConnectionError(
                f"{self.dialect_name} sampling failed for {table_ref}: {last_error}",
                engine=self.engine_type.value,
                diagnostic=last_error,
            )
        return [normalize_row(row) for row in rows[:limit]]


class DBAPIEngineAdapter(BaseEngineAdapter):
    """Shared statement execution for drivers exposing a PEP 249 connection"""

    def disconnect(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing {self.dialect_name} connection: {e}")
            self._connection = None

    def is_connected(self) -> bool:
        return self._connection is not None

    def _rollback(self) -> None:
        try:
            self._connection.rollback()
        except Exception as e:
            logger.debug(f"Rollback after failed statement not possible: {e}")

    def execute_query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        if not self.is_connected():
            self.connect()

        start_time = time.time()
        cursor = None
        try:
            cursor = self._connection.cursor()
            if params:
                cursor.execute(sql, tuple(params))
            else:
                cursor.execute(sql)

            if cursor.description:
                columns = [desc[0] for desc in cursor.description]
                rows = [tuple(row) for row in cursor.fetchall()]
                row_count = len(rows)
            else:
                columns, rows = [], []
                row_count = cursor.rowcount

            return QueryResult(
                success=True,
                columns=columns,
                rows=rows,
                row_count=row_count,
                execution_time_ms=(time.time() - start_time) * 1000,
            )
        except Exception as e:
            self._rollback()
            return QueryResult(
                success=False,
                execution_time_ms=(time.time() - start_time) * 1000,
                error_message=str(e),
            )
        finally:
            if cursor is not None:
                try:
                    cursor.close()
                except Exception as e:
                    logger.debug(f"Ignoring error while closing cursor: {e}")


# Type alias for adapter classes
AdapterClass = Type[BaseEngineAdapter]


class EngineAdapterRegistry:
    """Registry for engine adapters using Factory pattern"""

    _adapters: Dict[EngineType, AdapterClass] = {}
    _lock = threading.Lock()

    @classmethod
    def register(cls, engine: EngineType, adapter_class: AdapterClass) -> None:
        with cls._lock:
            cls._adapters[engine] = adapter_class

    @classmethod
    def get_adapter_class(cls, engine: EngineType) -> AdapterClass:
        with cls._lock:
            if engine not in cls._adapters:
                raise UnsupportedEngineError(
                    f"No adapter registered for engine: {engine}",
                    engine=str(engine),
                )
            return cls._adapters[engine]

    @classmethod
    def create_adapter(
        cls,
        config: ConnectionConfig,
        credentials: Optional[DatabaseCredentials] = None,
        **kwargs: Any,
    ) -> BaseEngineAdapter:
        adapter_class = cls.get_adapter_class(config.engine)
        return adapter_class(config, credentials, **kwargs)

    @classmethod
    def get_supported_engines(cls) -> List[EngineType]:
        with cls._lock:
            return list(cls._adapters.keys())

    @classmethod
    def is_supported(cls, engine: EngineType) -> bool:
        with cls._lock:
            return engine in cls._adapters

    @classmethod
    def missing_engines(cls) -> List[EngineType]:
        """Engine kinds declared in EngineType without a registered adapter"""
        with cls._lock:
            return [e for e in EngineType if e not in cls._adapters]


def register_adapter(engine: EngineType):
    """Decorator to register an engine adapter class"""
    def decorator(cls: AdapterClass) -> AdapterClass:
        EngineAdapterRegistry.register(engine, cls)
        return cls
    return decorator
