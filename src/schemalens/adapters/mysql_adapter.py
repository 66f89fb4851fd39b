"""
MySQL Engine Adapter
"""
from __future__ import annotations

from typing import Optional

from ..config import EngineType, SSLMode
from .base import CatalogQuery, DBAPIEngineAdapter, register_adapter


@register_adapter(EngineType.MYSQL)
class MySQLAdapter(DBAPIEngineAdapter):
    """MySQL adapter (mysql-connector-python); a schema is a MySQL database"""

    quote_open = "`"
    quote_close = "`"

    @property
    def engine_type(self) -> EngineType:
        return EngineType.MYSQL

    @property
    def dialect_name(self) -> str:
        return "MySQL"

    @property
    def default_schema(self) -> Optional[str]:
        return self.config.database

    def connect(self) -> None:
        try:
            import mysql.connector
        except ImportError:
            raise ImportError(
                "mysql-connector-python is required for MySQL support. "
                "Install it with: pip install mysql-connector-python"
            )

        connection_config = {
            "host": self.config.host,
            "port": self.config.effective_port(),
            "user": self.credentials.username,
            "password": self.credentials.secret("password"),
            "connection_timeout": self.config.connection_timeout,
            "autocommit": True,
        }
        if self.config.database:
            connection_config["database"] = self.config.database

        ssl_mode = self.config.ssl_mode
        if ssl_mode == SSLMode.DISABLE:
            connection_config["ssl_disabled"] = True
        else:
            connection_config["ssl_disabled"] = False
            if self.config.ssl_ca_path:
                connection_config["ssl_ca"] = self.config.ssl_ca_path
            if ssl_mode in (SSLMode.VERIFY_CA, SSLMode.VERIFY_FULL):
                connection_config["ssl_verify_cert"] = True
            if ssl_mode == SSLMode.VERIFY_FULL:
                connection_config["ssl_verify_identity"] = True

        self._connection = mysql.connector.connect(**connection_config)

    def is_connected(self) -> bool:
        if self._connection is None:
            return False
        try:
            return self._connection.is_connected()
        except Exception:
            return False

    def permission_hint(self) -> str:
        user = self.username
        database = self.config.database or "<database>"
        return (
            f"Database user '{user}' lacks permissions to access schemas. "
            f"Contact your database administrator to grant: "
            f"GRANT SELECT ON {database}.* TO '{user}';"
        )

    def _server_version(self) -> Optional[str]:
        result = self.execute_query("SELECT VERSION()")
        return str(result.rows[0][0]) if result.success and result.rows else None

    def _schemas_sql(self) -> CatalogQuery:
        return (
            "SELECT SCHEMA_NAME AS schema_name FROM information_schema.SCHEMATA ORDER BY SCHEMA_NAME",
            (),
        )

    def _tables_sql(self) -> CatalogQuery:
        return (
            """
            SELECT
                TABLE_SCHEMA AS table_schema,
                TABLE_NAME AS table_name,
                TABLE_COMMENT AS description,
                TABLE_ROWS AS row_count
            FROM information_schema.TABLES
            WHERE TABLE_TYPE = 'BASE TABLE'
            ORDER BY TABLE_SCHEMA, TABLE_NAME
            """,
            (),
        )

    def _schema_predicate(self, schema: Optional[str]):
        schema = schema or self.default_schema
        if schema:
            return "TABLE_SCHEMA = %s", (schema,)
        return "TABLE_SCHEMA = DATABASE()", ()

    def _columns_sql(self, table: str, schema: Optional[str]) -> CatalogQuery:
        predicate, params = self._schema_predicate(schema)
        return (
            f"""
            SELECT
                COLUMN_NAME AS column_name,
                DATA_TYPE AS data_type,
                IS_NULLABLE AS is_nullable,
                COLUMN_DEFAULT AS column_default,
                CHARACTER_MAXIMUM_LENGTH AS max_length,
                NUMERIC_PRECISION AS numeric_precision,
                NUMERIC_SCALE AS numeric_scale,
                ORDINAL_POSITION AS ordinal_position,
                COLUMN_COMMENT AS column_comment,
                (COLUMN_KEY = 'PRI') AS is_primary_key
            FROM information_schema.COLUMNS
            WHERE TABLE_NAME = %s AND {predicate}
            ORDER BY ORDINAL_POSITION
            """,
            (table,) + params,
        )

    def _foreign_keys_sql(self, table: str, schema: Optional[str]) -> Optional[CatalogQuery]:
        predicate, params = self._schema_predicate(schema)
        return (
            f"""
            SELECT
                COLUMN_NAME AS column_name,
                REFERENCED_TABLE_NAME AS referenced_table,
                REFERENCED_COLUMN_NAME AS referenced_column
            FROM information_schema.KEY_COLUMN_USAGE
            WHERE TABLE_NAME = %s AND {predicate}
                AND REFERENCED_TABLE_NAME IS NOT NULL
            """,
            (table,) + params,
        )

    def _random_sample_sql(self, table_ref: str, limit: int) -> str:
        return f"SELECT * FROM {table_ref} ORDER BY RAND() LIMIT {int(limit)}"

    def _block_sample_sql(self, table_ref: str, limit: int) -> Optional[str]:
        # MySQL has no TABLESAMPLE; a 1% row filter avoids sorting the whole table
        return f"SELECT * FROM {table_ref} WHERE RAND() <= 0.01 LIMIT {int(limit)}"
