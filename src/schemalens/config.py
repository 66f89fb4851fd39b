"""
Configuration Management for schemalens
Uses Pydantic for validation and type safety
"""
from __future__ import annotations

import json
import os
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel

from .utils.errors import ConfigurationError, UnsupportedEngineError


class EngineType(str, Enum):
    """Supported source engines"""
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MSSQL = "mssql"
    BIGQUERY = "bigquery"
    DATABRICKS = "databricks"
    DB2 = "db2"

    @classmethod
    def parse(cls, value: Any) -> "EngineType":
        """Resolve an engine kind, accepting the historical aliases"""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower()
        key = ENGINE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise UnsupportedEngineError(
                f"Unsupported database engine: {value!r}",
                engine=str(value),
            ) from None


ENGINE_ALIASES = {
    "postgresql": "postgres",
    "pg": "postgres",
    "sqlserver": "mssql",
    "sql_server": "mssql",
    "ibm_db2": "db2",
}

DEFAULT_PORTS: Dict[EngineType, Optional[int]] = {
    EngineType.POSTGRES: 5432,
    EngineType.MYSQL: 3306,
    EngineType.MSSQL: 1433,
    EngineType.BIGQUERY: None,
    EngineType.DATABRICKS: None,
    EngineType.DB2: 50000,
}


class SSLMode(str, Enum):
    """SSL negotiation modes (libpq vocabulary, reused for MySQL)"""
    DISABLE = "disable"
    REQUIRE = "require"
    VERIFY_CA = "verify-ca"
    VERIFY_FULL = "verify-full"


class LLMProvider(str, Enum):
    """Supported LLM providers"""
    BEDROCK_CLAUDE = "bedrock_claude"


class VaultProvider(str, Enum):
    """Where credentials are read from"""
    AWS = "aws"
    ENV = "env"
    STATIC = "static"
    NONE = "none"


class LogLevel(str, Enum):
    """Log levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SchemaFilter(BaseModel):
    """
    Schema visibility rules for table listing

    An include-list wins outright. Otherwise the engine's system schemas and
    any user excludes are hidden. Comparisons ignore case.
    """
    include_schemas: List[str] = Field(default_factory=list)
    exclude_schemas: List[str] = Field(default_factory=list)

    def allows(self, schema: Optional[str], default_excludes: Iterable[str] = ()) -> bool:
        name = (schema or "").strip().lower()
        if self.include_schemas:
            return name in {s.strip().lower() for s in self.include_schemas}
        hidden = {s.lower() for s in default_excludes} | {s.strip().lower() for s in self.exclude_schemas}
        return name not in hidden


class ConnectionConfig(BaseModel):
    """Connection parameters for one data source / environment"""
    engine: EngineType
    host: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("host", "hostname", "server"),
    )
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    database: Optional[str] = None
    ssl_mode: SSLMode = Field(
        default=SSLMode.DISABLE,
        validation_alias=AliasChoices("ssl_mode", "sslMode", "ssl"),
    )
    ssl_ca_path: Optional[str] = None
    connection_timeout: int = Field(default=30, ge=1, le=300)

    # SQL Server specific
    encrypt: bool = True
    trust_server_certificate: bool = False
    instance: Optional[str] = None
    application_name: str = "schemalens"
    odbc_driver: str = "ODBC Driver 18 for SQL Server"

    # BigQuery specific
    project_id: Optional[str] = None
    default_dataset: Optional[str] = None
    location: Optional[str] = None

    # Databricks specific
    server_hostname: Optional[str] = None
    http_path: Optional[str] = None
    catalog: Optional[str] = None

    include_schemas: List[str] = Field(default_factory=list)
    exclude_schemas: List[str] = Field(default_factory=list)

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "ignore",
    }

    @field_validator("engine", mode="before")
    @classmethod
    def parse_engine(cls, v: Any) -> EngineType:
        return EngineType.parse(v)

    @field_validator("ssl_mode", mode="before")
    @classmethod
    def parse_ssl_mode(cls, v: Any) -> Any:
        # legacy boolean "ssl" flag
        if v is None or v is False:
            return SSLMode.DISABLE
        if v is True:
            return SSLMode.REQUIRE
        return v

    def effective_port(self) -> Optional[int]:
        """Configured port, else the engine's conventional default"""
        return self.port or DEFAULT_PORTS.get(self.engine)

    @property
    def schema_filter(self) -> SchemaFilter:
        return SchemaFilter(
            include_schemas=self.include_schemas,
            exclude_schemas=self.exclude_schemas,
        )


class DatabaseCredentials(BaseModel):
    """Credentials as fetched from the vault"""
    username: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("username", "user", "userName"),
    )
    password: Optional[SecretStr] = None
    access_token: Optional[SecretStr] = None
    service_account_json: Optional[SecretStr] = None
    service_account_path: Optional[str] = None

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "ignore",
    }

    @field_validator(
        "username", "password", "access_token", "service_account_json", "service_account_path",
        mode="before",
    )
    @classmethod
    def coerce_to_string(cls, v: Any) -> Any:
        if v is None or isinstance(v, (str, SecretStr)):
            return v
        if isinstance(v, (dict, list)):
            return json.dumps(v)
        return str(v)

    def secret(self, name: str) -> Optional[str]:
        """Plain value of a secret field, or None"""
        value = getattr(self, name)
        if value is None:
            return None
        return value.get_secret_value() if isinstance(value, SecretStr) else value


class LLMConfig(BaseModel):
    """LLM configuration for Bedrock Claude"""
    provider: LLMProvider = LLMProvider.BEDROCK_CLAUDE
    model_id: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[SecretStr] = None
    aws_secret_access_key: Optional[SecretStr] = None
    aws_session_token: Optional[SecretStr] = None
    max_tokens: int = Field(default=4096, ge=100, le=100000)
    temperature: float = Field(default=0.1, ge=0.0, le=1.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay: float = Field(default=1.0, ge=0.1, le=30.0)
    request_timeout: int = Field(default=120, ge=10, le=600)


class VaultConfig(BaseModel):
    """Secret provider configuration"""
    provider: VaultProvider = VaultProvider.ENV
    aws_region: str = "us-east-1"
    secret_prefix: str = ""
    env_prefix: str = "SCHEMALENS_SECRET_"


class AnalysisConfig(BaseModel):
    """Tunables for sampling and analysis"""
    sample_limit: int = Field(default=100, ge=10, le=100)
    large_table_threshold: int = Field(default=10000, ge=1)
    per_column_value_cap: int = Field(default=20, ge=1, le=100)
    prompt_sample_values: int = Field(default=5, ge=0, le=20)
    description_max_length: int = Field(default=500, ge=50)
    max_column_workers: int = Field(default=8, ge=1, le=64)
    max_table_workers: int = Field(default=4, ge=1, le=32)
    stale_analysis_after_seconds: int = Field(default=3600, ge=60)


class StoreConfig(BaseModel):
    """Metadata store configuration"""
    sqlite_path: str = "schemalens.db"


class SystemConfig(BaseModel):
    """Main system configuration"""
    llm: LLMConfig = Field(default_factory=LLMConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    log_level: LogLevel = LogLevel.INFO
    json_logs: bool = False
    debug_mode: bool = False

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "SystemConfig":
        """Create configuration from environment variables (and a .env file)"""
        load_dotenv(dotenv_path)

        llm_config = LLMConfig(
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            model_id=os.getenv("BEDROCK_MODEL_ID", "anthropic.claude-3-5-sonnet-20241022-v2:0"),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "4096")),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.1")),
        )

        vault_config = VaultConfig(
            provider=VaultProvider(os.getenv("SCHEMALENS_VAULT_PROVIDER", "env").lower()),
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            secret_prefix=os.getenv("SCHEMALENS_SECRET_PREFIX", ""),
            env_prefix=os.getenv("SCHEMALENS_SECRET_ENV_PREFIX", "SCHEMALENS_SECRET_"),
        )

        analysis_config = AnalysisConfig(
            sample_limit=int(os.getenv("SCHEMALENS_SAMPLE_LIMIT", "100")),
            max_column_workers=int(os.getenv("SCHEMALENS_COLUMN_WORKERS", "8")),
        )

        return cls(
            llm=llm_config,
            vault=vault_config,
            analysis=analysis_config,
            store=StoreConfig(sqlite_path=os.getenv("SCHEMALENS_DB_PATH", "schemalens.db")),
            log_level=LogLevel(os.getenv("LOG_LEVEL", "INFO").upper()),
            json_logs=os.getenv("SCHEMALENS_JSON_LOGS", "false").lower() == "true",
            debug_mode=os.getenv("DEBUG_MODE", "false").lower() == "true",
        )

    @classmethod
    def from_yaml(cls, path: str) -> "SystemConfig":
        """Load configuration from a YAML file"""
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Could not read configuration file {path}: {e}",
                config_key=path,
                original_error=e,
            )
        return cls.model_validate(data)


def default_excluded_schemas(engine: EngineType) -> FrozenSet[str]:
    """System / catalog schemas hidden from listings unless explicitly included"""
    return _SYSTEM_SCHEMAS[engine]


_SYSTEM_SCHEMAS: Dict[EngineType, FrozenSet[str]] = {
    EngineType.POSTGRES: frozenset({"information_schema", "pg_catalog", "pg_toast"}),
    EngineType.MYSQL: frozenset({"information_schema", "mysql", "performance_schema", "sys"}),
    EngineType.MSSQL: frozenset({
        "sys", "information_schema", "guest",
        "db_owner", "db_accessadmin", "db_securityadmin", "db_ddladmin",
        "db_backupoperator", "db_datareader", "db_datawriter",
        "db_denydatareader", "db_denydatawriter",
    }),
    EngineType.BIGQUERY: frozenset({"information_schema"}),
    EngineType.DATABRICKS: frozenset({"information_schema"}),
    EngineType.DB2: frozenset({
        "sysibm", "syscat", "sysstat", "systools", "sysproc",
        "sysibmadm", "sysfun", "sysibminternal", "sysibmts",
    }),
}


# Global configuration instance
_config: Optional[SystemConfig] = None


def get_config() -> SystemConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = SystemConfig.from_env()
    return _config


def set_config(config: SystemConfig) -> None:
    """Set the global configuration instance"""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance"""
    global _config
    _config = None
