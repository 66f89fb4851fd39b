"""
Unit Tests for the Sampler
"""
import pytest
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schemalens.config import AnalysisConfig
from schemalens.pipeline.sampler import SampleSet, Sampler, clamp_limit
from schemalens.utils import get_metrics_collector


class TestClampLimit:
    @pytest.mark.parametrize("requested,expected", [
        (1, 10),
        (10, 10),
        (55, 55),
        (100, 100),
        (5000, 100),
    ])
    def test_bounds(self, requested, expected):
        assert clamp_limit(requested) == expected


class TestSampleSet:
    def test_values_for(self):
        samples = SampleSet(column_values={"id": ["1", "2", "3"]}, sampled_rows=3)
        assert samples.values_for("id", 2) == ["1", "2"]
        assert samples.values_for("id") == ["1", "2", "3"]
        assert samples.values_for("missing") == []
        assert not samples.is_empty

    def test_empty(self):
        assert SampleSet().is_empty


class TestSampler:
    """Tests for sampling through the scripted PostgreSQL adapter"""

    def test_groups_values_by_column(self, pg_adapter):
        samples = Sampler(pg_adapter).sample("orders", "public")
        assert samples.row_count == 3
        assert samples.sampled_rows == 3
        assert samples.column_values["id"] == ["1", "2", "3"]
        # nulls are dropped
        assert samples.column_values["total"] == ["19.99", "5.00"]
        assert samples.schema_details["customer_id"].referenced_table == "customers"

    def test_per_column_cap(self, pg_adapter):
        samples = Sampler(pg_adapter, AnalysisConfig(per_column_value_cap=2)).sample("orders", "public")
        assert samples.column_values["id"] == ["1", "2"]
        assert samples.sampled_rows == 3

    def test_limit_is_clamped(self, pg_adapter, fake_db):
        Sampler(pg_adapter).sample("orders", "public", limit=3)
        sample_sql = [s for s in fake_db.statements if "RANDOM()" in s]
        assert sample_sql and "LIMIT 10" in sample_sql[-1]

    def test_columns_without_values_are_present(self, pg_adapter, fake_db):
        fake_db.add_table("empty", [("id", "integer", False, True)])
        samples = Sampler(pg_adapter).sample("empty", "public")
        assert samples.column_values == {"id": []}
        assert samples.is_empty
        assert samples.error is None

    def test_single_session(self, pg_adapter, fake_db):
        Sampler(pg_adapter).sample("orders", "public")
        assert fake_db.connections == 1
        assert fake_db.open_connections == 0

    def test_engine_failure_gives_empty_set(self, pg_adapter, fake_db):
        fake_db.failures.add("connect")
        samples = Sampler(pg_adapter).sample("orders", "public")
        assert samples.is_empty
        assert "password authentication failed" in samples.error
        assert get_metrics_collector().get_counter(
            "errors_total", {"error_type": "EngineConnectionError", "category": "sampling"}
        ) == 1.0

    def test_all_sampling_strategies_failing(self, pg_adapter, fake_db):
        fake_db.failures.update({"random", "limit"})
        samples = Sampler(pg_adapter).sample("orders", "public")
        assert samples.is_empty
        assert samples.error

    def test_catalog_failure_keeps_sampled_rows(self, pg_adapter, fake_db):
        fake_db.failures.add("columns")
        samples = Sampler(pg_adapter).sample("orders", "public")

        assert samples.sampled_rows == 3
        assert samples.schema_details == {}
        assert samples.values_for("total") == ["19.99", "5.00"]
        assert samples.error is None
        counters = get_metrics_collector().get_metrics()["counters"]
        assert any('category="introspection"' in key for key in counters)
