"""
In-Memory Metadata Store
"""
from __future__ import annotations

import copy
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
from ..utils import DependentRecordsError, RecordNotFoundError
from .base import UNSET, MetadataStore


class InMemoryMetadataStore(MetadataStore):
    """Dict-backed store; records are copied in and out so callers never share state"""

    def __init__(self):
        self._lock = threading.RLock()
        self._data_sources: Dict[str, DataSource] = {}
        self._environments: Dict[str, Environment] = {}
        self._tables: Dict[str, Table] = {}
        self._columns: Dict[str, Column] = {}
        self._relationships: Dict[str, Relationship] = {}

    def _snapshot(self):
        return copy.deepcopy((
            self._data_sources, self._environments, self._tables,
            self._columns, self._relationships,
        ))

    @contextmanager
    def transaction(self) -> Generator["InMemoryMetadataStore", None, None]:
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield self
            except BaseException:
                (self._data_sources, self._environments, self._tables,
                 self._columns, self._relationships) = snapshot
                raise

    @staticmethod
    def _get(records: Dict[str, Any], entity: str, record_id: str) -> Any:
        try:
            return records[record_id]
        except KeyError:
            raise RecordNotFoundError(entity, record_id) from None

    # Data sources

    def create_data_source(self, data_source: DataSource) -> DataSource:
        with self._lock:
            self._data_sources[data_source.id] = copy.deepcopy(data_source)
        return data_source

    def get_data_source(self, data_source_id: str) -> DataSource:
        with self._lock:
            return copy.deepcopy(self._get(self._data_sources, "DataSource", data_source_id))

    def list_data_sources(self) -> List[DataSource]:
        with self._lock:
            return [copy.deepcopy(d) for d in sorted(self._data_sources.values(), key=lambda d: d.name)]

    def update_data_source(self, data_source: DataSource) -> DataSource:
        with self._lock:
            self._get(self._data_sources, "DataSource", data_source.id)
            data_source.updated_at = utcnow()
            self._data_sources[data_source.id] = copy.deepcopy(data_source)
        return data_source

    def delete_data_source(self, data_source_id: str) -> None:
        with self._lock:
            self._get(self._data_sources, "DataSource", data_source_id)
            env_ids = {e.id for e in self._environments.values() if e.data_source_id == data_source_id}
            if any(t.environment_id in env_ids for t in self._tables.values()):
                raise DependentRecordsError("DataSource", data_source_id, "tables")
            for env_id in env_ids:
                del self._environments[env_id]
            del self._data_sources[data_source_id]

    # Environments

    def create_environment(self, environment: Environment) -> Environment:
        with self._lock:
            self._get(self._data_sources, "DataSource", environment.data_source_id)
            self._environments[environment.id] = copy.deepcopy(environment)
        return environment

    def get_environment(self, environment_id: str) -> Environment:
        with self._lock:
            return copy.deepcopy(self._get(self._environments, "Environment", environment_id))

    def list_environments(self, data_source_id: str) -> List[Environment]:
        with self._lock:
            return [
                copy.deepcopy(e) for e in self._environments.values()
                if e.data_source_id == data_source_id
            ]

    def update_environment_health(
        self,
        environment_id: str,
        status: HealthStatus,
        checked_at: datetime,
    ) -> Environment:
        with self._lock:
            environment = self._get(self._environments, "Environment", environment_id)
            environment.health_status = status
            environment.last_checked_at = checked_at
            return copy.deepcopy(environment)

    # Tables

    def create_table(self, table: Table, columns: Optional[List[Column]] = None) -> Table:
        with self._lock:
            self._get(self._environments, "Environment", table.environment_id)
            self._tables[table.id] = copy.deepcopy(table)
            for column in columns or []:
                column.table_id = table.id
                self._columns[column.id] = copy.deepcopy(column)
        return table

    def get_table(self, table_id: str) -> Table:
        with self._lock:
            return copy.deepcopy(self._get(self._tables, "Table", table_id))

    def find_table(self, environment_id: str, name: str, schema: Optional[str] = None) -> Optional[Table]:
        with self._lock:
            for table in self._tables.values():
                if table.environment_id == environment_id and table.name == name and table.schema == schema:
                    return copy.deepcopy(table)
        return None

    def list_tables(self, environment_id: str) -> List[Table]:
        with self._lock:
            tables = [t for t in self._tables.values() if t.environment_id == environment_id]
            return [copy.deepcopy(t) for t in sorted(tables, key=lambda t: (t.schema or "", t.name))]

    def list_tables_by_status(self, status: AnalysisStatus) -> List[Table]:
        with self._lock:
            return [copy.deepcopy(t) for t in self._tables.values() if t.analysis_status == status]

    def update_table_analysis(
        self,
        table_id: str,
        status: AnalysisStatus,
        result: Any = UNSET,
        description: Any = UNSET,
    ) -> Table:
        with self._lock:
            table = self._get(self._tables, "Table", table_id)
            table.analysis_status = status
            if result is not UNSET:
                table.analysis_result = copy.deepcopy(result)
            if description is not UNSET:
                table.description = description
            table.updated_at = utcnow()
            return copy.deepcopy(table)

    def delete_table(self, table_id: str) -> None:
        with self.transaction():
            self._get(self._tables, "Table", table_id)
            for column_id in [c.id for c in self._columns.values() if c.table_id == table_id]:
                del self._columns[column_id]
            for rel_id in [
                r.id for r in self._relationships.values()
                if table_id in (r.source_table_id, r.target_table_id)
            ]:
                del self._relationships[rel_id]
            del self._tables[table_id]

    # Columns

    def list_columns(self, table_id: str) -> List[Column]:
        with self._lock:
            columns = [c for c in self._columns.values() if c.table_id == table_id]
            columns.sort(key=lambda c: (c.ordinal_position is None, c.ordinal_position or 0, c.name))
            return [copy.deepcopy(c) for c in columns]

    def update_column_description(self, column_id: str, description: Optional[AIDescription]) -> Column:
        with self._lock:
            column = self._get(self._columns, "Column", column_id)
            column.ai_description = copy.deepcopy(description)
            return copy.deepcopy(column)

    # Relationships

    def create_relationship_if_absent(self, relationship: Relationship) -> Optional[Relationship]:
        with self._lock:
            key = relationship.unique_key
            if any(r.unique_key == key for r in self._relationships.values()):
                return None
            self._relationships[relationship.id] = copy.deepcopy(relationship)
        return relationship

    def find_relationship(self, key: RelationshipKey) -> Optional[Relationship]:
        with self._lock:
            for relationship in self._relationships.values():
                if relationship.unique_key == key:
                    return copy.deepcopy(relationship)
        return None

    def list_relationships(self, environment_id: str) -> List[Relationship]:
        with self._lock:
            return [
                copy.deepcopy(r) for r in self._relationships.values()
                if r.environment_id == environment_id
            ]

    def set_relationship_verified(self, relationship_id: str, verified: bool) -> Relationship:
        with self._lock:
            relationship = self._get(self._relationships, "Relationship", relationship_id)
            relationship.is_verified = verified
            return copy.deepcopy(relationship)
