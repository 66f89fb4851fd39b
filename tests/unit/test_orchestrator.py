"""
Unit Tests for the Analysis Orchestrator
"""
import pytest
from datetime import timedelta
from unittest.mock import MagicMock, patch
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schemalens.models import AnalysisStatus, utcnow
from schemalens.pipeline import NO_SAMPLE_NOTE, combine_usage, extract_recommendations
from schemalens.utils import (
    AnalysisFailedError,
    EngineConnectionError,
    RecordNotFoundError,
    get_metrics_collector,
)


class TestExtractRecommendations:
    """Tests for pulling improvement statements out of a table summary"""

    def test_numbered_bold_sections(self):
        content = (
            "1. **Business Purpose**: Tracks orders.\n"
            "- not a recommendation\n"
            "2. **Data Quality**:\n"
            "- Add a NOT NULL constraint on total\n"
            "- **Index customer_id**\n"
            "3. **Usage Recommendations**: Join orders to customers\n"
            "4. **Potential Relationships**:\n"
            "- orders.customer_id -> customers.id\n"
        )
        assert extract_recommendations(content) == [
            "Add a NOT NULL constraint on total",
            "Index customer_id",
            "Join orders to customers",
        ]

    def test_markdown_headings(self):
        content = "## Data Quality\n* Deduplicate emails\n1. Validate formats\n## Data Patterns\n* ignored"
        assert extract_recommendations(content) == ["Deduplicate emails", "Validate formats"]

    def test_limit(self):
        content = "Data Quality:\n" + "\n".join(f"- fix {i}" for i in range(20))
        assert len(extract_recommendations(content, limit=3)) == 3

    def test_no_sections(self):
        assert extract_recommendations("AI analysis completed for orders") == []
        assert extract_recommendations(None) == []


class TestCombineUsage:
    def test_sums_and_tolerates_missing(self):
        total = combine_usage(
            {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            {},
            None,
            {"prompt_tokens": 1, "total_tokens": 1},
        )
        assert total == {"prompt_tokens": 11, "completion_tokens": 5, "total_tokens": 16}


class TestAnalyzeTable:
    """Tests for a single table run"""

    def test_completed(self, orchestrator, imported, store, reasoning):
        orders = imported["orders"]
        table = orchestrator.analyze_table(orders.id)

        assert table.analysis_status == AnalysisStatus.COMPLETED
        result = table.analysis_result
        assert result["columns_analyzed"] == 3
        assert result["row_count"] == 3
        assert result["sampled_rows"] == 3
        assert "note" not in result
        assert result["usage"] == {"prompt_tokens": 40, "completion_tokens": 20, "total_tokens": 60}
        assert result["suggested_improvements"] == [
            "Add a NOT NULL constraint where values are always present",
            "Join on the key columns",
        ]
        assert table.description.startswith("1. **Business Purpose**: orders holds id, customer_id, total.")

        findings = {f["column"]: f for f in result["column_findings"]}
        assert findings["total"]["data_pattern"] == "numeric"
        assert findings["total"]["sample_value"] == "19.99"

        columns = {c.name: c for c in store.list_columns(orders.id)}
        assert columns["customer_id"].ai_description.purpose == "customer_id of orders"
        assert len(reasoning.table_requests) == 1

    def test_samples_reach_prompts(self, orchestrator, imported, reasoning):
        orchestrator.analyze_table(imported["orders"].id)
        request = next(r for r in reasoning.column_requests if r.column_name == "total")
        assert request.sample_values == ["19.99", "5.00"]
        assert request.is_nullable

    def test_status_persisted_before_work(self, orchestrator, imported, store, reasoning):
        seen = []
        original = reasoning.analyze_table

        def spy(request):
            seen.append(store.get_table(imported["orders"].id).analysis_status)
            return original(request)

        reasoning.analyze_table = spy
        orchestrator.analyze_table(imported["orders"].id)
        assert seen == [AnalysisStatus.ANALYZING]

    def test_column_failure_is_isolated(self, orchestrator, imported, reasoning, store):
        reasoning.fail_columns = {"total"}
        table = orchestrator.analyze_table(imported["orders"].id)

        assert table.analysis_status == AnalysisStatus.COMPLETED
        findings = {f["column"]: f for f in table.analysis_result["column_findings"]}
        assert "stub failure" in findings["total"]["error"]
        assert findings["total"]["purpose"] == "total field"
        assert "error" not in findings["id"]
        total = next(c for c in store.list_columns(imported["orders"].id) if c.name == "total")
        assert total.ai_description.purpose == "total field"
        assert get_metrics_collector().get_counter("column_description_total", {"outcome": "failed"}) == 1.0

    def test_failed_column_keeps_earlier_description(self, orchestrator, imported, reasoning, store):
        orchestrator.analyze_table(imported["orders"].id)
        reasoning.fail_columns = {"total"}
        orchestrator.analyze_table(imported["orders"].id)

        total = next(c for c in store.list_columns(imported["orders"].id) if c.name == "total")
        assert total.ai_description.purpose == "total of orders"

    def test_table_reasoning_failure_uses_fallback_summary(self, orchestrator, imported, reasoning):
        reasoning.fail_table = True
        table = orchestrator.analyze_table(imported["orders"].id)

        assert table.analysis_status == AnalysisStatus.COMPLETED
        assert table.analysis_result["summary"] == "AI analysis completed for orders"
        assert table.analysis_result["suggested_improvements"] == []
        assert table.analysis_result["usage"]["total_tokens"] == 45

    def test_sampling_failure_degrades(self, orchestrator, imported, reasoning, fake_db):
        fake_db.failures.add("connect")
        table = orchestrator.analyze_table(imported["orders"].id)

        assert table.analysis_status == AnalysisStatus.COMPLETED
        assert table.analysis_result["note"] == NO_SAMPLE_NOTE
        assert table.analysis_result["sampled_rows"] == 0
        # row count falls back to the imported catalog estimate
        assert table.analysis_result["row_count"] == 3
        assert reasoning.table_requests[0].note == NO_SAMPLE_NOTE
        assert all(r.sample_values == [] for r in reasoning.column_requests)

    def test_missing_credentials_fails(self, orchestrator, catalog, store, reasoning):
        data_source = catalog.register_data_source("shop", "postgres", {"host": "db"}, "shop/prod")
        environment = catalog.add_environment(data_source.id, "production")
        orders = catalog.import_tables(environment.id, [("public", "orders")])[0]
        data_source.credentials_key = "shop/rotated"
        store.update_data_source(data_source)

        table = orchestrator.analyze_table(orders.id)
        assert table.analysis_status == AnalysisStatus.FAILED
        assert "shop/rotated" in table.analysis_result["error"]
        assert reasoning.column_requests == []
        assert get_metrics_collector().get_counter(
            "table_analysis_total", {"status": "FAILED"}
        ) == 1.0

    def test_adapter_setup_failure_fails(self, orchestrator, imported):
        def refuse(resolved):
            raise EngineConnectionError("postgres server unreachable", engine="postgres")
        orchestrator.adapter_factory = refuse

        table = orchestrator.analyze_table(imported["orders"].id)
        assert table.analysis_status == AnalysisStatus.FAILED
        assert table.analysis_result["error"] == "postgres server unreachable"

    def test_unexpected_error_marks_failed_and_raises(self, orchestrator, imported, store):
        with patch.object(store, "list_columns", side_effect=RuntimeError("disk full")):
            with pytest.raises(AnalysisFailedError) as exc_info:
                orchestrator.analyze_table(imported["orders"].id)

        assert exc_info.value.table_id == imported["orders"].id
        table = store.get_table(imported["orders"].id)
        assert table.analysis_status == AnalysisStatus.FAILED
        assert table.analysis_result["error"] == "disk full"

    def test_unexpected_setup_error_marks_failed(self, orchestrator, imported, store):
        def explode(resolved):
            raise RuntimeError("driver crashed while loading")
        orchestrator.adapter_factory = explode

        with pytest.raises(AnalysisFailedError) as exc_info:
            orchestrator.analyze_table(imported["orders"].id)
        assert isinstance(exc_info.value.original_error, RuntimeError)
        table = store.get_table(imported["orders"].id)
        assert table.analysis_status == AnalysisStatus.FAILED
        assert table.analysis_result["error"] == "driver crashed while loading"

    def test_vault_exception_marks_failed(self, orchestrator, imported, store):
        vault = MagicMock()
        vault.has_provider.return_value = True
        vault.get_credentials.side_effect = ConnectionError("vault sealed")
        orchestrator.resolver.secret_manager = vault

        table = orchestrator.analyze_table(imported["orders"].id)
        assert table.analysis_status == AnalysisStatus.FAILED
        assert "vault sealed" in table.analysis_result["error"]

    def test_store_failure_while_failing_keeps_original_error(self, orchestrator, imported, store, caplog):
        original_update = store.update_table_analysis

        def update(table_id, status, **kwargs):
            if status == AnalysisStatus.FAILED:
                raise OSError("metadata store unavailable")
            return original_update(table_id, status, **kwargs)

        with patch.object(store, "update_table_analysis", side_effect=update):
            with patch.object(store, "list_columns", side_effect=RuntimeError("disk full")):
                with pytest.raises(AnalysisFailedError) as exc_info:
                    orchestrator.analyze_table(imported["orders"].id)

        assert str(exc_info.value.original_error) == "disk full"
        assert any("Could not record FAILED status" in r.getMessage() for r in caplog.records)

    def test_store_failure_after_setup_error_raises(self, orchestrator, imported, store):
        def refuse(resolved):
            raise EngineConnectionError("postgres server unreachable", engine="postgres")
        orchestrator.adapter_factory = refuse
        original_update = store.update_table_analysis

        def update(table_id, status, **kwargs):
            if status == AnalysisStatus.FAILED:
                raise OSError("metadata store unavailable")
            return original_update(table_id, status, **kwargs)

        with patch.object(store, "update_table_analysis", side_effect=update):
            with pytest.raises(AnalysisFailedError) as exc_info:
                orchestrator.analyze_table(imported["orders"].id)
        assert isinstance(exc_info.value.original_error, EngineConnectionError)

    def test_catalog_failure_keeps_samples(self, orchestrator, imported, reasoning, fake_db):
        fake_db.failures.add("columns")
        table = orchestrator.analyze_table(imported["orders"].id)

        assert table.analysis_status == AnalysisStatus.COMPLETED
        assert table.analysis_result["sampled_rows"] == 3
        assert table.analysis_result.get("note") is None
        assert reasoning.table_requests[0].note is None

    def test_unknown_table(self, orchestrator):
        with pytest.raises(RecordNotFoundError):
            orchestrator.analyze_table("missing")

    def test_custom_prompt(self, orchestrator, imported, reasoning):
        orchestrator.analyze_table(imported["orders"].id, custom_prompt="Retail orders")
        assert {r.custom_prompt for r in reasoning.column_requests} == {"Retail orders"}

    def test_environment_prompt_is_default(self, orchestrator, catalog, reasoning):
        data_source = catalog.register_data_source("shop", "postgres", {"host": "db"}, "shop/prod")
        environment = catalog.add_environment(data_source.id, "production", custom_prompt="Healthcare data")
        orders = catalog.import_tables(environment.id, [("public", "orders")])[0]

        orchestrator.analyze_table(orders.id)
        assert {r.custom_prompt for r in reasoning.column_requests} == {"Healthcare data"}

    def test_rerun_from_completed(self, orchestrator, imported, reasoning):
        orchestrator.analyze_table(imported["orders"].id)
        table = orchestrator.analyze_table(imported["orders"].id)
        assert table.analysis_status == AnalysisStatus.COMPLETED
        assert len(reasoning.table_requests) == 2


class TestAnalyzeTables:
    """Tests for concurrent runs over several tables"""

    def test_all_tables(self, orchestrator, imported):
        results = orchestrator.analyze_tables([t.id for t in imported.values()])
        assert {t.name for t in results.values()} == {"orders", "customers"}
        assert all(t.analysis_status == AnalysisStatus.COMPLETED for t in results.values())

    def test_failure_is_isolated(self, orchestrator, imported, store):
        customers_id = imported["customers"].id
        original = store.list_columns

        def list_columns(table_id):
            if table_id == customers_id:
                raise RuntimeError("corrupt column metadata")
            return original(table_id)

        with patch.object(store, "list_columns", side_effect=list_columns):
            results = orchestrator.analyze_tables([imported["orders"].id, customers_id, "missing"])

        assert set(results) == {imported["orders"].id, customers_id}
        assert results[imported["orders"].id].analysis_status == AnalysisStatus.COMPLETED
        assert results[customers_id].analysis_status == AnalysisStatus.FAILED

    def test_empty(self, orchestrator):
        assert orchestrator.analyze_tables([]) == {}


class TestStaleRecovery:
    def test_recovers_only_old_runs(self, orchestrator, imported, store):
        orders = imported["orders"]
        store.update_table_analysis(orders.id, AnalysisStatus.ANALYZING)

        assert orchestrator.recover_stale_analyses() == []
        recovered = orchestrator.recover_stale_analyses(now=utcnow() + timedelta(hours=2))

        assert [t.id for t in recovered] == [orders.id]
        table = store.get_table(orders.id)
        assert table.analysis_status == AnalysisStatus.FAILED
        assert "stale-analysis recovery" in table.analysis_result["error"]
        assert store.get_table(imported["customers"].id).analysis_status == AnalysisStatus.PENDING
