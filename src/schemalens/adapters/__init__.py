"""
Engine Adapters Package
One adapter per supported engine behind a shared capability set
"""
from typing import Any, List, Optional

from .base import (
    PERMISSION_ERROR_TABLE,
    BaseEngineAdapter,
    ColumnMeta,
    ConnectionTestResult,
    DBAPIEngineAdapter,
    EngineAdapterRegistry,
    QueryResult,
    TableMeta,
    normalize_row,
    register_adapter,
    stringify_value,
)

# Import adapters to register them
from .postgresql_adapter import PostgreSQLAdapter
from .mysql_adapter import MySQLAdapter
from .mssql_adapter import MSSQLAdapter
from .bigquery_adapter import BigQueryAdapter
from .databricks_adapter import DatabricksAdapter
from .db2_adapter import DB2Adapter

from ..config import ConnectionConfig, DatabaseCredentials, EngineType


def create_adapter(
    config: ConnectionConfig,
    credentials: Optional[DatabaseCredentials] = None,
    **kwargs: Any,
) -> BaseEngineAdapter:
    """
    Factory function to create an engine adapter from configuration

    Args:
        config: Connection configuration
        credentials: Resolved credentials for the connection
        **kwargs: Forwarded to the adapter (e.g. large_table_threshold)

    Raises:
        UnsupportedEngineError: If no adapter is registered for the engine
    """
    return EngineAdapterRegistry.create_adapter(config, credentials, **kwargs)


def get_supported_engines() -> List[EngineType]:
    """Get list of supported engine kinds"""
    return EngineAdapterRegistry.get_supported_engines()


__all__ = [
    # Base classes
    "BaseEngineAdapter",
    "DBAPIEngineAdapter",
    "EngineAdapterRegistry",
    "TableMeta",
    "ColumnMeta",
    "QueryResult",
    "ConnectionTestResult",
    "PERMISSION_ERROR_TABLE",
    "register_adapter",
    "stringify_value",
    "normalize_row",
    # Concrete adapters
    "PostgreSQLAdapter",
    "MySQLAdapter",
    "MSSQLAdapter",
    "BigQueryAdapter",
    "DatabricksAdapter",
    "DB2Adapter",
    # Factory functions
    "create_adapter",
    "get_supported_engines",
]
