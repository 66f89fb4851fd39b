"""
Unit Tests for Metrics and Bedrock Retry Classification
"""
import pytest
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from botocore.exceptions import ClientError, ReadTimeoutError

from schemalens.llm_client.bedrock_client import LLMResponse, is_retryable
from schemalens.utils import PipelineMetrics, get_metrics_collector


class TestMetricsCollector:
    def test_counters_are_keyed_by_labels(self):
        PipelineMetrics.record_error("EngineConnectionError", "sampling")
        PipelineMetrics.record_error("EngineConnectionError", "sampling")
        PipelineMetrics.record_error("LLMError", "llm")

        collector = get_metrics_collector()
        assert collector.get_counter(
            "errors_total", {"category": "sampling", "error_type": "EngineConnectionError"}
        ) == 2.0
        counters = collector.get_metrics()["counters"]
        assert counters['errors_total{category="llm",error_type="LLMError"}'] == 1.0

    def test_timer_summary(self):
        collector = get_metrics_collector()
        collector.timer("render_seconds", 0.5)
        collector.timer("render_seconds", 1.5)

        summary = collector.get_metrics()["timers"]["render_seconds"]
        assert summary["count"] == 2
        assert summary["min"] == 0.5
        assert summary["max"] == 1.5
        assert summary["mean"] == pytest.approx(1.0)

    def test_reset(self):
        collector = get_metrics_collector()
        collector.counter("tables_seen")
        collector.reset()
        assert collector.get_counter("tables_seen") == 0.0


class TestRetryClassification:
    @staticmethod
    def client_error(code):
        return ClientError({"Error": {"Code": code, "Message": "boom"}}, "InvokeModel")

    @pytest.mark.parametrize("code,expected", [
        ("ThrottlingException", True),
        ("ServiceUnavailableException", True),
        ("ModelTimeoutException", True),
        ("ValidationException", False),
        ("AccessDeniedException", False),
    ])
    def test_client_error_codes(self, code, expected):
        assert is_retryable(self.client_error(code)) is expected

    def test_read_timeout(self):
        assert is_retryable(ReadTimeoutError(endpoint_url="https://bedrock-runtime"))

    def test_message_fallback(self):
        assert is_retryable(RuntimeError("Rate exceeded"))
        assert not is_retryable(RuntimeError("malformed request"))

    def test_truncated_response(self):
        response = LLMResponse(content="{", model_id="m", stop_reason="max_tokens")
        assert response.truncated
        assert response.usage["total_tokens"] == 0
