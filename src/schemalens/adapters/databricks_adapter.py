"""
Databricks SQL Engine Adapter
"""
from __future__ import annotations

from typing import Optional

from ..config import EngineType
from .base import CatalogQuery, DBAPIEngineAdapter, register_adapter


@register_adapter(EngineType.DATABRICKS)
class DatabricksAdapter(DBAPIEngineAdapter):
    """Databricks SQL warehouse adapter (databricks-sql-connector, Unity Catalog views)"""

    quote_open = "`"
    quote_close = "`"

    @property
    def engine_type(self) -> EngineType:
        return EngineType.DATABRICKS

    @property
    def dialect_name(self) -> str:
        return "Databricks"

    @property
    def default_schema(self) -> Optional[str]:
        return "default"

    @property
    def server_hostname(self) -> Optional[str]:
        host = self.config.server_hostname or self.config.host
        if host:
            host = host.replace("https://", "").replace("http://", "").rstrip("/")
        return host

    def _information_schema(self) -> str:
        if self.config.catalog:
            return f"{self.quote_identifier(self.config.catalog)}.information_schema"
        return "information_schema"

    def qualify_table(self, table: str, schema: Optional[str] = None) -> str:
        reference = super().qualify_table(table, schema)
        if self.config.catalog:
            return f"{self.quote_identifier(self.config.catalog)}.{reference}"
        return reference

    def connect(self) -> None:
        try:
            from databricks import sql
        except ImportError:
            raise ImportError(
                "databricks-sql-connector is required for Databricks support. "
                "Install it with: pip install databricks-sql-connector"
            )

        connection_params = {
            "server_hostname": self.server_hostname,
            "http_path": self.config.http_path,
            "access_token": self.credentials.secret("access_token") or self.credentials.secret("password"),
            "_socket_timeout": self.config.connection_timeout,
        }
        if self.config.catalog:
            connection_params["catalog"] = self.config.catalog

        self._connection = sql.connect(**connection_params)

    def _rollback(self) -> None:
        # warehouses run in autocommit; there is nothing to roll back
        return None

    def permission_hint(self) -> str:
        catalog = self.config.catalog or "<catalog>"
        return (
            f"Principal '{self.username or 'token owner'}' lacks permissions to access schemas. "
            f"Grant: GRANT USE CATALOG ON CATALOG {catalog} TO <principal>; "
            f"GRANT USE SCHEMA, SELECT ON SCHEMA {catalog}.<schema> TO <principal>;"
        )

    def _server_version(self) -> Optional[str]:
        result = self.execute_query("SELECT current_version().dbsql_version")
        return str(result.rows[0][0]) if result.success and result.rows else None

    def _schemas_sql(self) -> CatalogQuery:
        return (
            f"SELECT schema_name FROM {self._information_schema()}.schemata ORDER BY schema_name",
            (),
        )

    def _tables_sql(self) -> CatalogQuery:
        return (
            f"""
            SELECT
                table_schema,
                table_name,
                comment AS description,
                CAST(NULL AS BIGINT) AS row_count
            FROM {self._information_schema()}.tables
            WHERE table_type NOT IN ('VIEW', 'MATERIALIZED_VIEW')
            ORDER BY table_schema, table_name
            """,
            (),
        )

    def _columns_sql(self, table: str, schema: Optional[str]) -> CatalogQuery:
        info = self._information_schema()
        return (
            f"""
            SELECT
                c.column_name,
                c.full_data_type AS data_type,
                c.is_nullable,
                c.column_default,
                c.character_maximum_length AS max_length,
                c.numeric_precision,
                c.numeric_scale,
                c.ordinal_position + 1 AS ordinal_position,
                c.comment AS column_comment,
                EXISTS (
                    SELECT 1
                    FROM {info}.table_constraints tc
                    JOIN {info}.key_column_usage k
                        ON k.constraint_name = tc.constraint_name
                        AND k.constraint_schema = tc.constraint_schema
                    WHERE tc.constraint_type = 'PRIMARY KEY'
                        AND tc.table_schema = c.table_schema
                        AND tc.table_name = c.table_name
                        AND k.column_name = c.column_name
                ) AS is_primary_key
            FROM {info}.columns c
            WHERE c.table_name = ? AND c.table_schema = ?
            ORDER BY c.ordinal_position
            """,
            [table, schema or self.default_schema],
        )

    def _foreign_keys_sql(self, table: str, schema: Optional[str]) -> Optional[CatalogQuery]:
        info = self._information_schema()
        return (
            f"""
            SELECT
                k.column_name,
                u.table_name AS referenced_table,
                u.column_name AS referenced_column
            FROM {info}.referential_constraints rc
            JOIN {info}.key_column_usage k
                ON k.constraint_name = rc.constraint_name
                AND k.constraint_schema = rc.constraint_schema
            JOIN {info}.constraint_column_usage u
                ON u.constraint_name = rc.unique_constraint_name
                AND u.constraint_schema = rc.unique_constraint_schema
            WHERE k.table_name = ? AND k.table_schema = ?
            """,
            [table, schema or self.default_schema],
        )

    def _random_sample_sql(self, table_ref: str, limit: int) -> str:
        return f"SELECT * FROM {table_ref} ORDER BY RAND() LIMIT {int(limit)}"

    def _block_sample_sql(self, table_ref: str, limit: int) -> Optional[str]:
        return f"SELECT * FROM {table_ref} TABLESAMPLE (1 PERCENT) LIMIT {int(limit)}"
