"""
Google BigQuery Engine Adapter
"""
from __future__ import annotations

import json
import time
from typing import Any, Optional, Sequence

from ..config import EngineType
from ..utils import ConfigurationError, get_logger
from .base import BaseEngineAdapter, CatalogQuery, QueryResult, register_adapter

logger = get_logger(__name__)


def _bq_param_type(value: Any) -> str:
    if isinstance(value, bool):
        return "BOOL"
    if isinstance(value, int):
        return "INT64"
    if isinstance(value, float):
        return "FLOAT64"
    return "STRING"


@register_adapter(EngineType.BIGQUERY)
class BigQueryAdapter(BaseEngineAdapter):
    """
    BigQuery adapter (google-cloud-bigquery)

    Datasets play the role of schemas. Catalog listings use the regional
    INFORMATION_SCHEMA views, so only datasets in `config.location` appear.
    """

    quote_open = "`"
    quote_close = "`"
    health_check_sql = "SELECT 1 AS test"

    @property
    def engine_type(self) -> EngineType:
        return EngineType.BIGQUERY

    @property
    def dialect_name(self) -> str:
        return "BigQuery"

    @property
    def default_schema(self) -> Optional[str]:
        return self.config.default_dataset

    @property
    def project_id(self) -> Optional[str]:
        if self.config.project_id:
            return self.config.project_id
        return getattr(self._connection, "project", None)

    @property
    def region_qualifier(self) -> str:
        return f"region-{(self.config.location or 'US').lower()}"

    def quote_identifier(self, name: str) -> str:
        return "`" + name.replace("`", "\\`") + "`"

    def qualify_table(self, table: str, schema: Optional[str] = None) -> str:
        """`project.dataset.table`; a dotted table name already carries its dataset"""
        project = self.project_id
        if "." in table:
            path = f"{project}.{table}" if project else table
        else:
            dataset = schema or self.default_schema
            parts = [p for p in (project, dataset, table) if p]
            path = ".".join(parts)
        return self.quote_identifier(path)

    def _dataset_ref(self, schema: Optional[str]) -> str:
        dataset = schema or self.default_schema
        if not dataset:
            raise ConfigurationError(
                "BigQuery column lookup needs a dataset; pass a schema or set default_dataset",
                config_key="default_dataset",
            )
        return self.quote_identifier(f"{self.project_id}.{dataset}" if self.project_id else dataset)

    def _region_ref(self) -> str:
        prefix = f"{self.quote_identifier(self.project_id)}." if self.project_id else ""
        return f"{prefix}{self.quote_identifier(self.region_qualifier)}"

    def connect(self) -> None:
        try:
            from google.cloud import bigquery
            from google.oauth2 import service_account
        except ImportError:
            raise ImportError(
                "google-cloud-bigquery is required for BigQuery support. "
                "Install it with: pip install google-cloud-bigquery"
            )

        credentials = None
        info = self.credentials.secret("service_account_json")
        if info:
            credentials = service_account.Credentials.from_service_account_info(json.loads(info))
        elif self.credentials.service_account_path:
            credentials = service_account.Credentials.from_service_account_file(
                self.credentials.service_account_path
            )

        self._connection = bigquery.Client(
            project=self.config.project_id,
            credentials=credentials,
            location=self.config.location,
        )

    def disconnect(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing BigQuery client: {e}")
            self._connection = None

    def is_connected(self) -> bool:
        return self._connection is not None

    def execute_query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        if not self.is_connected():
            self.connect()

        from google.cloud import bigquery

        start_time = time.time()
        try:
            job_config = bigquery.QueryJobConfig(
                query_parameters=[
                    bigquery.ScalarQueryParameter(None, _bq_param_type(value), value)
                    for value in (params or ())
                ]
            )
            job = self._connection.query(sql, job_config=job_config)
            iterator = job.result(timeout=self.config.connection_timeout * 4)
            columns = [f.name for f in (iterator.schema or [])]
            rows = [tuple(row.values()) for row in iterator]
            return QueryResult(
                success=True,
                columns=columns,
                rows=rows,
                row_count=len(rows),
                execution_time_ms=(time.time() - start_time) * 1000,
            )
        except Exception as e:
            return QueryResult(
                success=False,
                execution_time_ms=(time.time() - start_time) * 1000,
                error_message=str(e),
            )

    def permission_hint(self) -> str:
        return (
            f"Principal '{self.username or 'service account'}' lacks permissions to list datasets "
            f"in project '{self.project_id}'. Grant roles/bigquery.metadataViewer and "
            f"roles/bigquery.dataViewer on the project or datasets."
        )

    def _schemas_sql(self) -> CatalogQuery:
        return (
            f"SELECT schema_name FROM {self._region_ref()}.INFORMATION_SCHEMA.SCHEMATA ORDER BY schema_name",
            (),
        )

    def _tables_sql(self) -> CatalogQuery:
        region = self._region_ref()
        return (
            f"""
            SELECT
                t.table_schema,
                t.table_name,
                JSON_VALUE(o.option_value) AS description,
                CAST(NULL AS INT64) AS row_count
            FROM {region}.INFORMATION_SCHEMA.TABLES t
            LEFT JOIN {region}.INFORMATION_SCHEMA.TABLE_OPTIONS o
                ON o.table_schema = t.table_schema
                AND o.table_name = t.table_name
                AND o.option_name = 'description'
            WHERE t.table_type = 'BASE TABLE'
            ORDER BY t.table_schema, t.table_name
            """,
            (),
        )

    def _columns_sql(self, table: str, schema: Optional[str]) -> CatalogQuery:
        dataset = self._dataset_ref(schema)
        return (
            f"""
            SELECT
                c.column_name,
                c.data_type,
                c.is_nullable,
                c.column_default,
                CAST(NULL AS INT64) AS max_length,
                CAST(NULL AS INT64) AS numeric_precision,
                CAST(NULL AS INT64) AS numeric_scale,
                c.ordinal_position,
                f.description AS column_comment,
                EXISTS (
                    SELECT 1
                    FROM {dataset}.INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
                    JOIN {dataset}.INFORMATION_SCHEMA.KEY_COLUMN_USAGE k
                        ON k.constraint_name = tc.constraint_name
                    WHERE tc.constraint_type = 'PRIMARY KEY'
                        AND tc.table_name = c.table_name
                        AND k.column_name = c.column_name
                ) AS is_primary_key
            FROM {dataset}.INFORMATION_SCHEMA.COLUMNS c
            LEFT JOIN {dataset}.INFORMATION_SCHEMA.COLUMN_FIELD_PATHS f
                ON f.table_name = c.table_name
                AND f.column_name = c.column_name
                AND f.field_path = c.column_name
            WHERE c.table_name = ?
            ORDER BY c.ordinal_position
            """,
            (table,),
        )

    def _foreign_keys_sql(self, table: str, schema: Optional[str]) -> Optional[CatalogQuery]:
        dataset = self._dataset_ref(schema)
        return (
            f"""
            SELECT
                k.column_name,
                u.table_name AS referenced_table,
                u.column_name AS referenced_column
            FROM {dataset}.INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
            JOIN {dataset}.INFORMATION_SCHEMA.KEY_COLUMN_USAGE k
                ON k.constraint_name = tc.constraint_name
            JOIN {dataset}.INFORMATION_SCHEMA.CONSTRAINT_COLUMN_USAGE u
                ON u.constraint_name = tc.constraint_name
            WHERE tc.constraint_type = 'FOREIGN KEY'
                AND tc.table_name = ?
            """,
            (table,),
        )

    def _random_sample_sql(self, table_ref: str, limit: int) -> str:
        return f"SELECT * FROM {table_ref} ORDER BY RAND() LIMIT {int(limit)}"

    def _block_sample_sql(self, table_ref: str, limit: int) -> Optional[str]:
        return f"SELECT * FROM {table_ref} TABLESAMPLE SYSTEM (1 PERCENT) LIMIT {int(limit)}"
