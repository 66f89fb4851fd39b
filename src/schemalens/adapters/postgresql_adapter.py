"""
PostgreSQL Engine Adapter
"""
from __future__ import annotations

from typing import Optional

from ..config import EngineType, SSLMode
from .base import CatalogQuery, DBAPIEngineAdapter, register_adapter


@register_adapter(EngineType.POSTGRES)
class PostgreSQLAdapter(DBAPIEngineAdapter):
    """PostgreSQL adapter (psycopg2)"""

    @property
    def engine_type(self) -> EngineType:
        return EngineType.POSTGRES

    @property
    def dialect_name(self) -> str:
        return "PostgreSQL"

    @property
    def default_schema(self) -> Optional[str]:
        return "public"

    def connect(self) -> None:
        try:
            import psycopg2
        except ImportError:
            raise ImportError(
                "psycopg2 is required for PostgreSQL support. "
                "Install it with: pip install psycopg2-binary"
            )

        connection_params = {
            "host": self.config.host,
            "port": self.config.effective_port(),
            "dbname": self.config.database,
            "user": self.credentials.username,
            "password": self.credentials.secret("password"),
            "connect_timeout": self.config.connection_timeout,
            "sslmode": self.config.ssl_mode.value,
            "application_name": self.config.application_name,
        }
        if self.config.ssl_mode in (SSLMode.VERIFY_CA, SSLMode.VERIFY_FULL) and self.config.ssl_ca_path:
            connection_params["sslrootcert"] = self.config.ssl_ca_path

        self._connection = psycopg2.connect(**connection_params)
        self._connection.autocommit = True

    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.closed == 0

    def permission_hint(self) -> str:
        user = self.username
        return (
            f"Database user '{user}' lacks permissions to access schemas. "
            f"Contact your database administrator to grant: "
            f"GRANT USAGE ON SCHEMA public TO {user}; "
            f"GRANT SELECT ON ALL TABLES IN SCHEMA public TO {user};"
        )

    def _server_version(self) -> Optional[str]:
        result = self.execute_query("SHOW server_version")
        return str(result.rows[0][0]) if result.success and result.rows else None

    def _schemas_sql(self) -> CatalogQuery:
        # information_schema.schemata only lists schemas the user holds privileges on
        return (
            "SELECT schema_name FROM information_schema.schemata ORDER BY schema_name",
            (),
        )

    def _tables_sql(self) -> CatalogQuery:
        return (
            """
            SELECT
                t.table_schema,
                t.table_name,
                obj_description(c.oid, 'pg_class') AS description,
                COALESCE(s.n_live_tup, c.reltuples::bigint) AS row_count
            FROM information_schema.tables t
            LEFT JOIN pg_namespace n ON n.nspname = t.table_schema
            LEFT JOIN pg_class c ON c.relname = t.table_name AND c.relnamespace = n.oid
            LEFT JOIN pg_stat_user_tables s ON s.relid = c.oid
            WHERE t.table_type = 'BASE TABLE'
            ORDER BY t.table_schema, t.table_name
            """,
            (),
        )

    def _columns_sql(self, table: str, schema: Optional[str]) -> CatalogQuery:
        return (
            """
            SELECT
                c.column_name,
                c.data_type,
                c.is_nullable,
                c.column_default,
                c.character_maximum_length AS max_length,
                c.numeric_precision,
                c.numeric_scale,
                c.ordinal_position,
                col_description(
                    (quote_ident(c.table_schema) || '.' || quote_ident(c.table_name))::regclass,
                    c.ordinal_position
                ) AS column_comment,
                EXISTS (
                    SELECT 1
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                        ON tc.constraint_name = kcu.constraint_name
                        AND tc.table_schema = kcu.table_schema
                        AND tc.table_name = kcu.table_name
                    WHERE tc.constraint_type = 'PRIMARY KEY'
                        AND tc.table_schema = c.table_schema
                        AND tc.table_name = c.table_name
                        AND kcu.column_name = c.column_name
                ) AS is_primary_key
            FROM information_schema.columns c
            WHERE c.table_name = %s AND c.table_schema = %s
            ORDER BY c.ordinal_position
            """,
            (table, schema or self.default_schema),
        )

    def _foreign_keys_sql(self, table: str, schema: Optional[str]) -> Optional[CatalogQuery]:
        return (
            """
            SELECT
                kcu.column_name,
                ccu.table_name AS referenced_table,
                ccu.column_name AS referenced_column
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
                ON ccu.constraint_name = tc.constraint_name
                AND ccu.constraint_schema = tc.constraint_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
                AND tc.table_name = %s
                AND tc.table_schema = %s
            """,
            (table, schema or self.default_schema),
        )

    def _random_sample_sql(self, table_ref: str, limit: int) -> str:
        return f"SELECT * FROM {table_ref} ORDER BY RANDOM() LIMIT {int(limit)}"

    def _block_sample_sql(self, table_ref: str, limit: int) -> Optional[str]:
        return f"SELECT * FROM {table_ref} TABLESAMPLE BERNOULLI(1) LIMIT {int(limit)}"
