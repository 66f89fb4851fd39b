"""
Unit Tests for the Connection Resolver
"""
import pytest
from unittest.mock import MagicMock
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schemalens.adapters import PostgreSQLAdapter
from schemalens.config import AnalysisConfig, EngineType
from schemalens.connection import ConnectionResolver
from schemalens.models import DataSource, Environment
from schemalens.utils import ConfigurationError, CredentialsUnavailableError
from schemalens.vault import SecretManager, StaticSecretProvider


@pytest.fixture
def data_source():
    return DataSource(
        name="shop",
        engine=EngineType.POSTGRES,
        connection={"host": "db.internal", "database": "shop", "port": 5433},
        credentials_key="shop/prod",
    )


class TestBuildConfig:
    """Tests for merging data source and environment parameters"""

    def test_environment_overrides(self, resolver, data_source):
        environment = Environment(
            data_source_id=data_source.id,
            name="staging",
            connection={"host": "staging.internal", "sslMode": "require"},
        )
        config = resolver.build_config(data_source, environment)
        assert config.host == "staging.internal"
        assert config.port == 5433
        assert config.ssl_mode.value == "require"
        assert config.engine == EngineType.POSTGRES

    def test_invalid_parameters(self, resolver, data_source):
        data_source.connection["port"] = "not-a-port"
        with pytest.raises(ConfigurationError) as exc_info:
            resolver.build_config(data_source)
        assert exc_info.value.context.data_source_id == data_source.id


class TestResolveCredentials:
    """Tests for vaulted credential lookup"""

    def test_data_source_key(self, resolver, data_source):
        credentials = resolver.resolve_credentials(data_source)
        assert credentials.username == "analyst"
        assert credentials.secret("password") == "s3cret"

    def test_environment_key_wins(self, secrets, data_source):
        secrets._provider.put_secret("shop/staging", {"username": "stager", "password": "x"})
        environment = Environment(data_source_id=data_source.id, name="staging", credentials_key="shop/staging")
        credentials = ConnectionResolver(secrets).resolve_credentials(data_source, environment)
        assert credentials.username == "stager"

    def test_no_key_configured(self, resolver, data_source):
        data_source.credentials_key = None
        with pytest.raises(CredentialsUnavailableError):
            resolver.resolve_credentials(data_source)

    def test_unknown_key(self, resolver, data_source):
        data_source.credentials_key = "missing"
        with pytest.raises(CredentialsUnavailableError) as exc_info:
            resolver.resolve_credentials(data_source)
        assert exc_info.value.credentials_key == "missing"

    def test_uninitialized_vault(self, data_source):
        manager = SecretManager(StaticSecretProvider({"shop/prod": {"username": "analyst"}}))
        with pytest.raises(CredentialsUnavailableError):
            ConnectionResolver(manager).resolve_credentials(data_source)

    def test_vault_exception_becomes_unavailable(self, data_source):
        vault = MagicMock()
        vault.has_provider.return_value = True
        vault.get_credentials.side_effect = ConnectionError("vault sealed")

        with pytest.raises(CredentialsUnavailableError) as exc_info:
            ConnectionResolver(vault).resolve_credentials(data_source)
        assert exc_info.value.credentials_key == "shop/prod"
        assert isinstance(exc_info.value.original_error, ConnectionError)


class TestResolve:
    def test_resolved_connection_builds_adapter(self, resolver, data_source):
        resolved = resolver.resolve(data_source)
        adapter = resolved.create_adapter(AnalysisConfig(large_table_threshold=250))
        assert isinstance(adapter, PostgreSQLAdapter)
        assert adapter.large_table_threshold == 250
        assert adapter.username == "analyst"
