"""
IBM DB2 Engine Adapter
"""
from __future__ import annotations

from typing import Optional

from ..config import EngineType, SSLMode
from .base import CatalogQuery, DBAPIEngineAdapter, register_adapter


@register_adapter(EngineType.DB2)
class DB2Adapter(DBAPIEngineAdapter):
    """DB2 LUW adapter (ibm_db / ibm_db_dbi)"""

    health_check_sql = "SELECT 1 FROM SYSIBM.SYSDUMMY1"

    @property
    def engine_type(self) -> EngineType:
        return EngineType.DB2

    @property
    def dialect_name(self) -> str:
        return "IBM DB2"

    @property
    def default_schema(self) -> Optional[str]:
        # unqualified names resolve against the authorization id
        return self.username.upper() or None

    def build_connection_string(self) -> str:
        parts = [
            f"DATABASE={self.config.database or ''}",
            f"HOSTNAME={self.config.host or 'localhost'}",
            f"PORT={self.config.effective_port()}",
            "PROTOCOL=TCPIP",
            f"UID={self.credentials.username or ''}",
            f"PWD={self.credentials.secret('password') or ''}",
            f"CONNECTTIMEOUT={self.config.connection_timeout}",
        ]
        if self.config.ssl_mode != SSLMode.DISABLE:
            parts.append("SECURITY=SSL")
            if self.config.ssl_ca_path:
                parts.append(f"SSLServerCertificate={self.config.ssl_ca_path}")
        return ";".join(parts) + ";"

    def connect(self) -> None:
        try:
            import ibm_db_dbi
        except ImportError:
            raise ImportError(
                "ibm_db is required for DB2 support. "
                "Install it with: pip install ibm_db"
            )

        self._connection = ibm_db_dbi.connect(self.build_connection_string(), "", "")

    def permission_hint(self) -> str:
        user = self.username.upper()
        return (
            f"Database user '{self.username}' lacks permissions to access schemas. "
            f"Contact your database administrator to grant: "
            f"GRANT SELECT ON SYSCAT.TABLES TO USER {user}; "
            f"GRANT SELECT ON <schema>.<table> TO USER {user};"
        )

    def _server_version(self) -> Optional[str]:
        result = self.execute_query(
            "SELECT SERVICE_LEVEL FROM TABLE(SYSPROC.ENV_GET_INST_INFO()) AS INST"
        )
        return str(result.rows[0][0]) if result.success and result.rows else None

    def _schemas_sql(self) -> CatalogQuery:
        return (
            "SELECT SCHEMANAME AS schema_name FROM SYSCAT.SCHEMATA ORDER BY SCHEMANAME",
            (),
        )

    def _tables_sql(self) -> CatalogQuery:
        return (
            """
            SELECT
                TABSCHEMA AS table_schema,
                TABNAME AS table_name,
                REMARKS AS description,
                CARD AS row_count
            FROM SYSCAT.TABLES
            WHERE TYPE = 'T'
            ORDER BY TABSCHEMA, TABNAME
            """,
            (),
        )

    def _columns_sql(self, table: str, schema: Optional[str]) -> CatalogQuery:
        return (
            """
            SELECT
                COLNAME AS column_name,
                TYPENAME AS data_type,
                NULLS AS is_nullable,
                DEFAULT AS column_default,
                LENGTH AS max_length,
                CAST(NULL AS INTEGER) AS numeric_precision,
                SCALE AS numeric_scale,
                COLNO + 1 AS ordinal_position,
                REMARKS AS column_comment,
                CASE WHEN KEYSEQ IS NOT NULL AND KEYSEQ > 0 THEN 1 ELSE 0 END AS is_primary_key
            FROM SYSCAT.COLUMNS
            WHERE TABNAME = ? AND TABSCHEMA = ?
            ORDER BY COLNO
            """,
            (table, schema or self.default_schema),
        )

    def _foreign_keys_sql(self, table: str, schema: Optional[str]) -> Optional[CatalogQuery]:
        return (
            """
            SELECT
                fk.COLNAME AS column_name,
                r.REFTABNAME AS referenced_table,
                pk.COLNAME AS referenced_column
            FROM SYSCAT.REFERENCES r
            JOIN SYSCAT.KEYCOLUSE fk
                ON fk.CONSTNAME = r.CONSTNAME
                AND fk.TABSCHEMA = r.TABSCHEMA
                AND fk.TABNAME = r.TABNAME
            JOIN SYSCAT.KEYCOLUSE pk
                ON pk.CONSTNAME = r.REFKEYNAME
                AND pk.TABSCHEMA = r.REFTABSCHEMA
                AND pk.TABNAME = r.REFTABNAME
                AND pk.COLSEQ = fk.COLSEQ
            WHERE r.TABNAME = ? AND r.TABSCHEMA = ?
            """,
            (table, schema or self.default_schema),
        )

    def _random_sample_sql(self, table_ref: str, limit: int) -> str:
        return f"SELECT * FROM {table_ref} ORDER BY RAND() FETCH FIRST {int(limit)} ROWS ONLY"

    def _block_sample_sql(self, table_ref: str, limit: int) -> Optional[str]:
        return f"SELECT * FROM {table_ref} TABLESAMPLE BERNOULLI(1) FETCH FIRST {int(limit)} ROWS ONLY"

    def _limit_sample_sql(self, table_ref: str, limit: int) -> str:
        return f"SELECT * FROM {table_ref} FETCH FIRST {int(limit)} ROWS ONLY"
