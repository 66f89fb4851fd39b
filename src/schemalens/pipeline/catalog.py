"""
Catalog Service
Registration of data sources and environments, connection health checks,
table listing and import.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..adapters import ConnectionTestResult, TableMeta
from ..config import AnalysisConfig, EngineType
from ..connection import ConnectionResolver
from ..models import (
    DataSource,
    Environment,
    HealthStatus,
    Table,
    utcnow,
)
from ..store import MetadataStore
from ..utils import (
    CredentialsUnavailableError,
    ConfigurationError,
    RecordNotFoundError,
    UnsupportedEngineError,
    get_logger,
    log_context,
)
from .introspector import SchemaIntrospector
from .orchestrator import AdapterFactory

logger = get_logger(__name__)


def _find_listed(
    listing: Dict[Tuple[Optional[str], str], TableMeta],
    schema: Optional[str],
    name: str,
) -> Optional[TableMeta]:
    if (schema, name) in listing:
        return listing[(schema, name)]
    if schema is None:
        return next((t for t in listing.values() if t.name == name), None)
    return None


class CatalogService:
    """Operator-facing catalog operations over one metadata store"""

    def __init__(
        self,
        store: MetadataStore,
        resolver: ConnectionResolver,
        config: Optional[AnalysisConfig] = None,
        adapter_factory: Optional[AdapterFactory] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.config = config or AnalysisConfig()
        self.adapter_factory = adapter_factory or (lambda resolved: resolved.create_adapter(self.config))

    # Registration

    def register_data_source(
        self,
        name: str,
        engine: Any,
        connection: Optional[Dict[str, Any]] = None,
        credentials_key: Optional[str] = None,
    ) -> DataSource:
        data_source = DataSource(
            name=name,
            engine=EngineType.parse(engine),
            connection=dict(connection or {}),
            credentials_key=credentials_key,
        )
        # validate the parameters before anything is stored
        self.resolver.build_config(data_source)
        self.store.create_data_source(data_source)
        logger.info(
            f"Registered data source {name}",
            extra={"extra_fields": {"data_source_id": data_source.id, "engine": data_source.engine.value}}
        )
        return data_source

    def add_environment(
        self,
        data_source_id: str,
        name: str,
        connection: Optional[Dict[str, Any]] = None,
        credentials_key: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> Environment:
        data_source = self.store.get_data_source(data_source_id)
        environment = Environment(
            data_source_id=data_source.id,
            name=name,
            connection=dict(connection or {}),
            credentials_key=credentials_key,
            custom_prompt=custom_prompt,
        )
        self.resolver.build_config(data_source, environment)
        self.store.create_environment(environment)
        logger.info(
            f"Added environment {name} to {data_source.name}",
            extra={"extra_fields": {"environment_id": environment.id}}
        )
        return environment

    def _adapter(self, environment: Environment):
        data_source = self.store.get_data_source(environment.data_source_id)
        resolved = self.resolver.resolve(data_source, environment)
        return self.adapter_factory(resolved)

    # Health

    def test_environment(self, environment_id: str) -> ConnectionTestResult:
        """Check the environment's connection and record its health"""
        environment = self.store.get_environment(environment_id)
        with log_context(environment_id=environment.id):
            try:
                result = self._adapter(environment).test_connection()
            except (CredentialsUnavailableError, ConfigurationError, UnsupportedEngineError) as e:
                result = ConnectionTestResult(success=False, message="Connection could not be set up", error=e.message)

            status = HealthStatus.HEALTHY if result.success else HealthStatus.UNHEALTHY
            self.store.update_environment_health(environment.id, status, utcnow())
            logger.info(
                f"Connection test for {environment.name}: {status.value}",
                extra={"extra_fields": {"latency_ms": round(result.latency_ms, 2), "error": result.error}}
            )
        return result

    # Tables

    def list_available_tables(self, environment_id: str) -> List[TableMeta]:
        """
        Tables visible in the source database, after schema filtering

        Raises:
            CredentialsUnavailableError / EngineConnectionError: Setup or catalog failure
        """
        environment = self.store.get_environment(environment_id)
        with log_context(environment_id=environment.id):
            return SchemaIntrospector(self._adapter(environment)).list_available_tables()

    def import_tables(
        self,
        environment_id: str,
        tables: Iterable[Tuple[Optional[str], str]],
    ) -> List[Table]:
        """
        Import (schema, table) pairs as PENDING tables with their columns

        Tables already imported into the environment are skipped. Returns
        the newly created tables.
        """
        environment = self.store.get_environment(environment_id)
        requested = list(tables)
        created: List[Table] = []

        with log_context(environment_id=environment.id):
            adapter = self._adapter(environment)
            introspector = SchemaIntrospector(adapter)
            with adapter.session():
                listing = {(t.schema, t.name): t for t in adapter.list_tables()}
                for schema, name in requested:
                    meta = _find_listed(listing, schema, name)
                    if meta is None:
                        raise RecordNotFoundError("SourceTable", f"{schema}.{name}" if schema else name)
                    schema = meta.schema
                    if self.store.find_table(environment.id, name, schema) is not None:
                        logger.info(f"Skipping {meta.qualified_name}: already imported")
                        continue
                    table = Table(
                        environment_id=environment.id,
                        name=name,
                        schema=schema,
                        description=meta.description,
                        row_count=meta.row_count,
                    )
                    columns = introspector.build_columns(table.id, introspector.describe_table(name, schema))
                    created.append(self.store.create_table(table, columns))
                    logger.info(
                        f"Imported {table.qualified_name}",
                        extra={"extra_fields": {"columns": len(columns)}}
                    )
        return created

    def delete_table(self, table_id: str) -> None:
        """Delete a table together with its columns and relationships"""
        self.store.delete_table(table_id)
        logger.info(f"Deleted table {table_id}")

    def table_detail(self, table_id: str) -> Dict[str, Any]:
        detail = self.store.get_table_detail(table_id)
        detail["relationships"] = [
            r.to_dict()
            for r in self.store.list_relationships(detail["environment_id"])
            if table_id in (r.source_table_id, r.target_table_id)
        ]
        return detail
