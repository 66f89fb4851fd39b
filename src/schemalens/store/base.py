"""
Metadata Store Interface
Record-oriented persistence for data sources, environments, tables, columns
and relationships
"""
from __future__ import annotations

from abc import ABC, abstractmethod
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
)

# Sentinel for "leave this field unchanged"
UNSET: Any = object()


class MetadataStore(ABC):
    """
    Abstract metadata store

    Every method is atomic on its own. `transaction()` groups several calls
    so they commit or roll back together.
    """

    @abstractmethod
    @contextmanager
    def transaction(self) -> Generator["MetadataStore", None, None]:
        pass

    def close(self) -> None:
        pass

    # Data sources

    @abstractmethod
    def create_data_source(self, data_source: DataSource) -> DataSource:
        pass

    @abstractmethod
    def get_data_source(self, data_source_id: str) -> DataSource:
        """Raises RecordNotFoundError"""
        pass

    @abstractmethod
    def list_data_sources(self) -> List[DataSource]:
        pass

    @abstractmethod
    def update_data_source(self, data_source: DataSource) -> DataSource:
        pass

    @abstractmethod
    def delete_data_source(self, data_source_id: str) -> None:
        """Raises DependentRecordsError while any of its environments still own tables"""
        pass

    # Environments

    @abstractmethod
    def create_environment(self, environment: Environment) -> Environment:
        pass

    @abstractmethod
    def get_environment(self, environment_id: str) -> Environment:
        pass

    @abstractmethod
    def list_environments(self, data_source_id: str) -> List[Environment]:
        pass

    @abstractmethod
    def update_environment_health(
        self,
        environment_id: str,
        status: HealthStatus,
        checked_at: datetime,
    ) -> Environment:
        pass

    # Tables

    @abstractmethod
    def create_table(self, table: Table, columns: Optional[List[Column]] = None) -> Table:
        """Create a table together with its columns"""
        pass

    @abstractmethod
    def get_table(self, table_id: str) -> Table:
        pass

    @abstractmethod
    def find_table(self, environment_id: str, name: str, schema: Optional[str] = None) -> Optional[Table]:
        pass

    @abstractmethod
    def list_tables(self, environment_id: str) -> List[Table]:
        pass

    @abstractmethod
    def list_tables_by_status(self, status: AnalysisStatus) -> List[Table]:
        pass

    @abstractmethod
    def update_table_analysis(
        self,
        table_id: str,
        status: AnalysisStatus,
        result: Any = UNSET,
        description: Any = UNSET,
    ) -> Table:
        """Set the analysis status (and optionally result / description); bumps updated_at"""
        pass

    @abstractmethod
    def delete_table(self, table_id: str) -> None:
        """Delete a table, its columns, and every relationship touching it"""
        pass

    # Columns

    @abstractmethod
    def list_columns(self, table_id: str) -> List[Column]:
        pass

    @abstractmethod
    def update_column_description(self, column_id: str, description: Optional[AIDescription]) -> Column:
        pass

    # Relationships

    @abstractmethod
    def create_relationship_if_absent(self, relationship: Relationship) -> Optional[Relationship]:
        """Insert unless the uniqueness key already exists; None when it did"""
        pass

    @abstractmethod
    def find_relationship(self, key: RelationshipKey) -> Optional[Relationship]:
        pass

    @abstractmethod
    def list_relationships(self, environment_id: str) -> List[Relationship]:
        pass

    @abstractmethod
    def set_relationship_verified(self, relationship_id: str, verified: bool) -> Relationship:
        pass

    # Convenience

    def get_table_detail(self, table_id: str) -> Dict[str, Any]:
        """Table record with its columns, as plain data"""
        table = self.get_table(table_id)
        detail = table.to_dict()
        detail["columns"] = [c.to_dict() for c in self.list_columns(table_id)]
        return detail
