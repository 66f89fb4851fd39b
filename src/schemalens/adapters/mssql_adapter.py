"""
Microsoft SQL Server Engine Adapter
"""
from __future__ import annotations

from typing import Optional

from ..config import EngineType
from .base import CatalogQuery, DBAPIEngineAdapter, register_adapter


def _odbc_value(value: str) -> str:
    """Brace-quote an ODBC connection string value"""
    return "{" + value.replace("}", "}}") + "}"


@register_adapter(EngineType.MSSQL)
class MSSQLAdapter(DBAPIEngineAdapter):
    """SQL Server adapter (pyodbc)"""

    quote_open = "["
    quote_close = "]"
    health_check_sql = "SELECT 1 AS test"

    @property
    def engine_type(self) -> EngineType:
        return EngineType.MSSQL

    @property
    def dialect_name(self) -> str:
        return "SQL Server"

    @property
    def default_schema(self) -> Optional[str]:
        return "dbo"

    def build_connection_string(self) -> str:
        server = self.config.host or "localhost"
        if self.config.instance:
            server = f"{server}\\{self.config.instance}"
        else:
            server = f"{server},{self.config.effective_port()}"

        parts = [
            f"DRIVER={_odbc_value(self.config.odbc_driver)}",
            f"SERVER={server}",
            f"Encrypt={'yes' if self.config.encrypt else 'no'}",
            f"TrustServerCertificate={'yes' if self.config.trust_server_certificate else 'no'}",
            f"APP={_odbc_value(self.config.application_name)}",
        ]
        if self.config.database:
            parts.append(f"DATABASE={_odbc_value(self.config.database)}")
        if self.credentials.username:
            parts.append(f"UID={_odbc_value(self.credentials.username)}")
            parts.append(f"PWD={_odbc_value(self.credentials.secret('password') or '')}")
        return ";".join(parts) + ";"

    def connect(self) -> None:
        try:
            import pyodbc
        except ImportError:
            raise ImportError(
                "pyodbc is required for SQL Server support. "
                "Install it with: pip install pyodbc"
            )

        self._connection = pyodbc.connect(
            self.build_connection_string(),
            timeout=self.config.connection_timeout,
            autocommit=True,
        )

    def permission_hint(self) -> str:
        user = self.username
        return (
            f"Database user '{user}' lacks permissions to access schemas. "
            f"Contact your database administrator to grant: "
            f"GRANT SELECT ON SCHEMA::dbo TO [{user}]; GRANT VIEW DEFINITION TO [{user}];"
        )

    def _server_version(self) -> Optional[str]:
        result = self.execute_query("SELECT @@VERSION")
        if result.success and result.rows:
            return str(result.rows[0][0]).splitlines()[0]
        return None

    def _schemas_sql(self) -> CatalogQuery:
        return (
            "SELECT SCHEMA_NAME AS schema_name FROM INFORMATION_SCHEMA.SCHEMATA ORDER BY SCHEMA_NAME",
            (),
        )

    def _tables_sql(self) -> CatalogQuery:
        return (
            """
            SELECT
                t.TABLE_SCHEMA AS table_schema,
                t.TABLE_NAME AS table_name,
                CAST(ep.value AS NVARCHAR(4000)) AS description,
                (
                    SELECT SUM(p.rows)
                    FROM sys.partitions p
                    WHERE p.object_id = OBJECT_ID(QUOTENAME(t.TABLE_SCHEMA) + '.' + QUOTENAME(t.TABLE_NAME))
                        AND p.index_id IN (0, 1)
                ) AS row_count
            FROM INFORMATION_SCHEMA.TABLES t
            LEFT JOIN sys.extended_properties ep
                ON ep.major_id = OBJECT_ID(QUOTENAME(t.TABLE_SCHEMA) + '.' + QUOTENAME(t.TABLE_NAME))
                AND ep.minor_id = 0
                AND ep.name = 'MS_Description'
            WHERE t.TABLE_TYPE = 'BASE TABLE'
            ORDER BY t.TABLE_SCHEMA, t.TABLE_NAME
            """,
            (),
        )

    def _columns_sql(self, table: str, schema: Optional[str]) -> CatalogQuery:
        return (
            """
            SELECT
                c.COLUMN_NAME AS column_name,
                c.DATA_TYPE AS data_type,
                c.IS_NULLABLE AS is_nullable,
                c.COLUMN_DEFAULT AS column_default,
                c.CHARACTER_MAXIMUM_LENGTH AS max_length,
                c.NUMERIC_PRECISION AS numeric_precision,
                c.NUMERIC_SCALE AS numeric_scale,
                c.ORDINAL_POSITION AS ordinal_position,
                CAST(ep.value AS NVARCHAR(4000)) AS column_comment,
                CASE WHEN pk.COLUMN_NAME IS NOT NULL THEN 1 ELSE 0 END AS is_primary_key
            FROM INFORMATION_SCHEMA.COLUMNS c
            LEFT JOIN sys.extended_properties ep
                ON ep.major_id = OBJECT_ID(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME))
                AND ep.minor_id = COLUMNPROPERTY(
                    OBJECT_ID(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME)),
                    c.COLUMN_NAME,
                    'ColumnId'
                )
                AND ep.name = 'MS_Description'
            LEFT JOIN (
                SELECT kcu.TABLE_SCHEMA, kcu.TABLE_NAME, kcu.COLUMN_NAME
                FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
                JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
                    ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
                    AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA
                WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
            ) pk
                ON pk.TABLE_SCHEMA = c.TABLE_SCHEMA
                AND pk.TABLE_NAME = c.TABLE_NAME
                AND pk.COLUMN_NAME = c.COLUMN_NAME
            WHERE c.TABLE_NAME = ? AND c.TABLE_SCHEMA = ?
            ORDER BY c.ORDINAL_POSITION
            """,
            (table, schema or self.default_schema),
        )

    def _foreign_keys_sql(self, table: str, schema: Optional[str]) -> Optional[CatalogQuery]:
        return (
            """
            SELECT
                pc.name AS column_name,
                rt.name AS referenced_table,
                rc.name AS referenced_column
            FROM sys.foreign_key_columns fkc
            JOIN sys.tables pt ON pt.object_id = fkc.parent_object_id
            JOIN sys.schemas ps ON ps.schema_id = pt.schema_id
            JOIN sys.columns pc
                ON pc.object_id = fkc.parent_object_id AND pc.column_id = fkc.parent_column_id
            JOIN sys.tables rt ON rt.object_id = fkc.referenced_object_id
            JOIN sys.columns rc
                ON rc.object_id = fkc.referenced_object_id AND rc.column_id = fkc.referenced_column_id
            WHERE pt.name = ? AND ps.name = ?
            """,
            (table, schema or self.default_schema),
        )

    def _random_sample_sql(self, table_ref: str, limit: int) -> str:
        return f"SELECT TOP ({int(limit)}) * FROM {table_ref} ORDER BY NEWID()"

    def _block_sample_sql(self, table_ref: str, limit: int) -> Optional[str]:
        return f"SELECT TOP ({int(limit)}) * FROM {table_ref} TABLESAMPLE (1 PERCENT)"

    def _limit_sample_sql(self, table_ref: str, limit: int) -> str:
        return f"SELECT TOP ({int(limit)}) * FROM {table_ref}"
