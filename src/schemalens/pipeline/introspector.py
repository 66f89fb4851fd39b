"""
Schema Introspector
Reads table and column metadata through an engine adapter. Introspection
never writes to the metadata store; callers decide what to persist.
"""
from __future__ import annotations

from typing import List, Optional

from ..adapters import BaseEngineAdapter, ColumnMeta, TableMeta
from ..config import SchemaFilter
from ..models import Column
from ..utils import get_logger

logger = get_logger(__name__)


class SchemaIntrospector:
    """Catalog reads for one engine connection"""

    def __init__(self, adapter: BaseEngineAdapter):
        self.adapter = adapter

    def list_available_tables(self, schema_filter: Optional[SchemaFilter] = None) -> List[TableMeta]:
        """
        Tables the connected user can import

        When the user can see no non-system schema at all, a single
        PERMISSION_ERROR entry explaining the missing grants is returned
        instead of an empty list.
        """
        with self.adapter.session():
            schemas = self.adapter.list_schemas()
            if not schemas:
                logger.warning(
                    "No accessible schemas for connected user",
                    extra={"extra_fields": {
                        "engine": self.adapter.engine_type.value,
                        "user": self.adapter.username,
                    }}
                )
                return [TableMeta.permission_error(self.adapter.permission_hint())]
            tables = self.adapter.list_tables(schema_filter)

        logger.debug(f"Found {len(tables)} tables in {len(schemas)} schemas")
        return tables

    def describe_table(self, table: str, schema: Optional[str] = None) -> List[ColumnMeta]:
        return self.adapter.list_columns(table, schema)

    @staticmethod
    def build_columns(table_id: str, metas: List[ColumnMeta]) -> List[Column]:
        """Initial Column records for a newly imported table"""
        return [
            Column(
                table_id=table_id,
                name=meta.name,
                data_type=meta.data_type,
                is_nullable=meta.is_nullable,
                is_primary_key=meta.is_primary_key,
                is_foreign_key=meta.is_foreign_key,
                referenced_table=meta.referenced_table,
                referenced_column=meta.referenced_column,
                comment=meta.comment,
                ordinal_position=meta.ordinal_position if meta.ordinal_position is not None else index + 1,
            )
            for index, meta in enumerate(metas)
        ]
