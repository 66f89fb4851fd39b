"""
Connection Resolver
Turns a stored data source / environment into connection parameters plus
vaulted credentials, ready for an engine adapter
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..adapters import BaseEngineAdapter, create_adapter
from ..config import AnalysisConfig, ConnectionConfig, DatabaseCredentials
from ..models import DataSource, Environment
from ..utils import (
    ConfigurationError,
    CredentialsUnavailableError,
    ErrorContext,
    get_logger,
)
from ..vault import SecretManager

logger = get_logger(__name__)


@dataclass
class ResolvedConnection:
    """Connection parameters and credentials for one request"""
    config: ConnectionConfig
    credentials: DatabaseCredentials

    def create_adapter(self, analysis: Optional[AnalysisConfig] = None) -> BaseEngineAdapter:
        analysis = analysis or AnalysisConfig()
        return create_adapter(
            self.config,
            self.credentials,
            large_table_threshold=analysis.large_table_threshold,
        )


class ConnectionResolver:
    """
    Resolve connection parameters for a data source environment

    Environment parameters override the data source's. Credentials are
    looked up once per call by the environment's key (falling back to the
    data source's); nothing is cached between calls.
    """

    def __init__(self, secret_manager: SecretManager):
        self.secret_manager = secret_manager

    def build_config(
        self,
        data_source: DataSource,
        environment: Optional[Environment] = None,
    ) -> ConnectionConfig:
        params: Dict[str, Any] = dict(data_source.connection)
        if environment is not None:
            params.update(environment.connection)
        params["engine"] = data_source.engine

        try:
            return ConnectionConfig.model_validate(params)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid connection parameters for data source '{data_source.name}': {e}",
                config_key="connection",
                context=ErrorContext(
                    engine=data_source.engine.value,
                    data_source_id=data_source.id,
                    environment_id=environment.id if environment else None,
                ),
                original_error=e,
            )

    def resolve_credentials(
        self,
        data_source: DataSource,
        environment: Optional[Environment] = None,
    ) -> DatabaseCredentials:
        context = ErrorContext(
            engine=data_source.engine.value,
            data_source_id=data_source.id,
            environment_id=environment.id if environment else None,
        )
        key = (environment.credentials_key if environment else None) or data_source.credentials_key
        if not key:
            raise CredentialsUnavailableError(
                f"No credentials configured for data source '{data_source.name}'",
                context=context,
            )
        if not self.secret_manager.has_provider():
            raise CredentialsUnavailableError(
                "No secret provider available to resolve credentials",
                credentials_key=key,
                context=context,
            )

        try:
            raw = self.secret_manager.get_credentials(key)
        except Exception as e:
            raise CredentialsUnavailableError(
                f"Credential lookup for '{key}' failed: {e}",
                credentials_key=key,
                context=context,
                original_error=e,
            ) from e
        if raw is None:
            raise CredentialsUnavailableError(
                f"Credentials '{key}' could not be retrieved",
                credentials_key=key,
                context=context,
            )

        try:
            return DatabaseCredentials.model_validate(raw)
        except ValidationError as e:
            raise CredentialsUnavailableError(
                f"Credentials '{key}' are malformed: {e.error_count()} invalid field(s)",
                credentials_key=key,
                context=context,
                original_error=e,
            )

    def resolve(
        self,
        data_source: DataSource,
        environment: Optional[Environment] = None,
    ) -> ResolvedConnection:
        config = self.build_config(data_source, environment)
        credentials = self.resolve_credentials(data_source, environment)
        logger.debug(
            "Resolved connection",
            extra={"extra_fields": {
                "engine": config.engine.value,
                "host": config.host or config.server_hostname or config.project_id,
                "port": config.effective_port(),
                "ssl_mode": config.ssl_mode.value,
            }}
        )
        return ResolvedConnection(config=config, credentials=credentials)
