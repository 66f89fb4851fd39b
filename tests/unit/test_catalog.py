"""
Unit Tests for the Catalog Service
"""
import pytest
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schemalens.adapters import PERMISSION_ERROR_TABLE
from schemalens.config import EngineType
from schemalens.models import AnalysisStatus, HealthStatus
from schemalens.utils import (
    ConfigurationError,
    CredentialsUnavailableError,
    RecordNotFoundError,
    UnsupportedEngineError,
)


class TestRegistration:
    """Tests for data source and environment registration"""

    def test_register(self, catalog, store):
        data_source = catalog.register_data_source("shop", "postgresql", {"host": "db"}, "shop/prod")
        assert data_source.engine == EngineType.POSTGRES
        assert store.get_data_source(data_source.id).credentials_key == "shop/prod"

    def test_unknown_engine(self, catalog, store):
        with pytest.raises(UnsupportedEngineError):
            catalog.register_data_source("shop", "oracle", {"host": "db"})
        assert store.list_data_sources() == []

    def test_invalid_parameters_are_not_stored(self, catalog, store):
        with pytest.raises(ConfigurationError):
            catalog.register_data_source("shop", "postgres", {"host": "db", "port": 70000})
        assert store.list_data_sources() == []

    def test_environment_keeps_custom_prompt(self, catalog, environment, store):
        env = catalog.add_environment(environment.data_source_id, "staging", custom_prompt="Retail data")
        assert store.get_environment(env.id).custom_prompt == "Retail data"
        assert store.get_environment(env.id).health_status == HealthStatus.UNKNOWN

    def test_environment_for_unknown_data_source(self, catalog):
        with pytest.raises(RecordNotFoundError):
            catalog.add_environment("missing", "production")


class TestHealth:
    """Tests for connection health checks"""

    def test_healthy(self, catalog, environment, store):
        result = catalog.test_environment(environment.id)
        assert result.success
        assert result.server_version == "15.4"
        stored = store.get_environment(environment.id)
        assert stored.health_status == HealthStatus.HEALTHY
        assert stored.last_checked_at is not None

    def test_connection_refused(self, catalog, environment, store, fake_db):
        fake_db.failures.add("connect")
        result = catalog.test_environment(environment.id)
        assert not result.success
        assert "password authentication failed" in result.error
        assert store.get_environment(environment.id).health_status == HealthStatus.UNHEALTHY

    def test_missing_credentials(self, catalog, store):
        data_source = catalog.register_data_source("shop", "postgres", {"host": "db"}, "shop/unknown")
        environment = catalog.add_environment(data_source.id, "production")
        result = catalog.test_environment(environment.id)
        assert not result.success
        assert "shop/unknown" in result.error
        assert store.get_environment(environment.id).health_status == HealthStatus.UNHEALTHY


class TestTables:
    """Tests for listing and importing source tables"""

    def test_list_available(self, catalog, environment):
        tables = catalog.list_available_tables(environment.id)
        assert [(t.schema, t.name) for t in tables] == [("public", "customers"), ("public", "orders")]
        assert tables[1].row_count == 3

    def test_no_accessible_schemas(self, catalog, environment, fake_db):
        fake_db.schemas = []
        tables = catalog.list_available_tables(environment.id)
        assert len(tables) == 1
        assert tables[0].name == PERMISSION_ERROR_TABLE
        assert tables[0].is_permission_error
        assert "analyst" in tables[0].description

    def test_list_without_credentials(self, catalog, store):
        data_source = catalog.register_data_source("shop", "postgres", {"host": "db"})
        environment = catalog.add_environment(data_source.id, "production")
        with pytest.raises(CredentialsUnavailableError):
            catalog.list_available_tables(environment.id)

    def test_import(self, imported, store):
        orders = imported["orders"]
        assert orders.analysis_status == AnalysisStatus.PENDING
        assert orders.row_count == 3
        columns = store.list_columns(orders.id)
        assert [c.name for c in columns] == ["id", "customer_id", "total"]
        assert columns[0].is_primary_key
        assert columns[1].referenced_table == "customers"
        assert columns[2].is_nullable

    def test_import_skips_existing(self, catalog, environment, imported, store):
        again = catalog.import_tables(environment.id, [("public", "orders")])
        assert again == []
        assert len(store.list_tables(environment.id)) == 2

    def test_import_without_schema(self, catalog, environment):
        tables = catalog.import_tables(environment.id, [(None, "customers")])
        assert tables[0].schema == "public"

    def test_import_unknown_table(self, catalog, environment, store):
        with pytest.raises(RecordNotFoundError):
            catalog.import_tables(environment.id, [("public", "invoices")])
        assert store.list_tables(environment.id) == []

    def test_import_uses_one_connection(self, catalog, environment, fake_db):
        catalog.import_tables(environment.id, [("public", "orders"), ("public", "customers")])
        assert fake_db.connections == 1
        assert fake_db.open_connections == 0

    def test_table_detail(self, catalog, imported):
        detail = catalog.table_detail(imported["orders"].id)
        assert detail["name"] == "orders"
        assert [c["name"] for c in detail["columns"]] == ["id", "customer_id", "total"]
        assert detail["relationships"] == []

    def test_delete_table(self, catalog, imported, store):
        catalog.delete_table(imported["customers"].id)
        with pytest.raises(RecordNotFoundError):
            store.get_table(imported["customers"].id)
