"""
schemalens
==========

Schema intelligence for SQL and analytics engines: register a data source,
introspect and sample its tables, and let Bedrock Claude describe every
table, every column and the relationships between them.

Supported engines: PostgreSQL, MySQL, SQL Server, BigQuery, Databricks, DB2.

Quick Start:
------------

    from schemalens import (
        AnalysisOrchestrator, CatalogService, ConnectionResolver,
        InMemoryMetadataStore, LLMReasoningService, SecretManager,
        EnvironmentSecretProvider, get_llm_client, LLMConfig,
    )

    store = InMemoryMetadataStore()
    secrets = SecretManager(EnvironmentSecretProvider())
    secrets.init()
    resolver = ConnectionResolver(secrets)

    catalog = CatalogService(store, resolver)
    source = catalog.register_data_source(
        "shop", "postgres", {"host": "localhost", "database": "shop"}, "shop_prod",
    )
    env = catalog.add_environment(source.id, "production")
    orders, = catalog.import_tables(env.id, [("public", "orders")])

    reasoning = LLMReasoningService(get_llm_client(LLMConfig()))
    table = AnalysisOrchestrator(store, resolver, reasoning).analyze_table(orders.id)
    print(table.analysis_status, table.description)
"""

__version__ = "1.0.0"
__author__ = "schemalens Team"

# Configuration
from .config import (
    EngineType,
    SSLMode,
    LLMProvider,
    VaultProvider,
    LogLevel,
    SchemaFilter,
    ConnectionConfig,
    DatabaseCredentials,
    LLMConfig,
    VaultConfig,
    AnalysisConfig,
    StoreConfig,
    SystemConfig,
    get_config,
    set_config,
)

# Engine Adapters
from .adapters import (
    BaseEngineAdapter,
    EngineAdapterRegistry,
    TableMeta,
    ColumnMeta,
    QueryResult,
    ConnectionTestResult,
    create_adapter,
    get_supported_engines,
)

# Records
from .models import (
    HealthStatus,
    AnalysisStatus,
    RelationshipKind,
    DataSource,
    Environment,
    Table,
    Column,
    AIDescription,
    Relationship,
    AnalysisResult,
)

# Collaborators
from .vault import (
    SecretManager,
    AWSSecretsManagerProvider,
    EnvironmentSecretProvider,
    StaticSecretProvider,
)
from .connection import ConnectionResolver, ResolvedConnection
from .llm_client import (
    BedrockClaudeClient,
    LLMReasoningService,
    ReasoningService,
    get_llm_client,
)
from .store import MetadataStore, InMemoryMetadataStore, SqliteMetadataStore

# Pipeline
from .pipeline import (
    SchemaIntrospector,
    Sampler,
    AnalysisOrchestrator,
    RelationshipInferrer,
    CatalogService,
)

# Utilities
from .utils import (
    setup_logging,
    get_logger,
    SchemaLensError,
    EngineConnectionError,
    CredentialsUnavailableError,
    InsufficientTablesError,
    UnsupportedEngineError,
    ReasoningServiceError,
    AnalysisFailedError,
    get_metrics_collector,
    PipelineMetrics,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "EngineType",
    "SSLMode",
    "LLMProvider",
    "VaultProvider",
    "LogLevel",
    "SchemaFilter",
    "ConnectionConfig",
    "DatabaseCredentials",
    "LLMConfig",
    "VaultConfig",
    "AnalysisConfig",
    "StoreConfig",
    "SystemConfig",
    "get_config",
    "set_config",
    # Adapters
    "BaseEngineAdapter",
    "EngineAdapterRegistry",
    "TableMeta",
    "ColumnMeta",
    "QueryResult",
    "ConnectionTestResult",
    "create_adapter",
    "get_supported_engines",
    # Records
    "HealthStatus",
    "AnalysisStatus",
    "RelationshipKind",
    "DataSource",
    "Environment",
    "Table",
    "Column",
    "AIDescription",
    "Relationship",
    "AnalysisResult",
    # Collaborators
    "SecretManager",
    "AWSSecretsManagerProvider",
    "EnvironmentSecretProvider",
    "StaticSecretProvider",
    "ConnectionResolver",
    "ResolvedConnection",
    "BedrockClaudeClient",
    "LLMReasoningService",
    "ReasoningService",
    "get_llm_client",
    "MetadataStore",
    "InMemoryMetadataStore",
    "SqliteMetadataStore",
    # Pipeline
    "SchemaIntrospector",
    "Sampler",
    "AnalysisOrchestrator",
    "RelationshipInferrer",
    "CatalogService",
    # Utilities
    "setup_logging",
    "get_logger",
    "SchemaLensError",
    "EngineConnectionError",
    "CredentialsUnavailableError",
    "InsufficientTablesError",
    "UnsupportedEngineError",
    "ReasoningServiceError",
    "AnalysisFailedError",
    "get_metrics_collector",
    "PipelineMetrics",
]
