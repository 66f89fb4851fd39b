"""
Unit Tests for Logging Context and Redaction
"""
import json
import logging
import threading
import pytest
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schemalens.utils import (
    clear_context,
    get_correlation_id,
    get_logger,
    log_context,
    log_operation,
    redact,
    set_correlation_id,
    snapshot_context,
)
from schemalens.utils.logging import JSONFormatter


@pytest.fixture(autouse=True)
def clean_context():
    clear_context()
    yield
    clear_context()


class TestRedaction:
    def test_masks_credentials(self):
        fields = {"user": "analyst", "password": "s3cret", "connection": {"host": "db", "Token": "abc"}}
        assert redact(fields) == {"user": "analyst", "password": "***", "connection": {"host": "db", "Token": "***"}}

    def test_none_is_kept(self):
        assert redact({"password": None}) == {"password": None}


class TestLogContext:
    """Tests for thread-scoped analysis context"""

    def test_nested_scopes_restore(self):
        with log_context(correlation_id="run-1", environment_id="env-1"):
            with log_context(table_id="tbl-1"):
                assert snapshot_context() == {
                    "correlation_id": "run-1", "environment_id": "env-1", "table_id": "tbl-1",
                }
            assert "table_id" not in snapshot_context()
        assert snapshot_context() == {}

    def test_context_is_per_thread(self):
        seen = []
        with log_context(table_id="tbl-1"):
            worker = threading.Thread(target=lambda: seen.append(snapshot_context()))
            worker.start()
            worker.join()
        assert seen == [{}]

    def test_correlation_id(self):
        generated = set_correlation_id()
        assert get_correlation_id() == generated
        assert set_correlation_id("fixed") == "fixed"


class TestPipelineLogger:
    def test_records_carry_context_and_masked_fields(self, caplog):
        logger = get_logger("schemalens.test")
        with caplog.at_level(logging.INFO, logger="schemalens.test"):
            with log_context(table_id="tbl-1"):
                logger.info("connecting", extra={"extra_fields": {"password": "s3cret", "host": "db"}})

        record = caplog.records[0]
        assert record.context == {"table_id": "tbl-1"}
        assert record.extra_fields == {"password": "***", "host": "db"}

        entry = json.loads(JSONFormatter().format(record))
        assert entry["table_id"] == "tbl-1"
        assert entry["password"] == "***"

    def test_log_operation(self, caplog):
        logger = get_logger("schemalens.test")
        with caplog.at_level(logging.INFO, logger="schemalens.test"):
            with log_operation(logger, "table_analysis", table="orders") as op:
                op["status"] = "COMPLETED"

        finished = caplog.records[-1]
        assert finished.getMessage() == "table_analysis finished"
        assert finished.extra_fields["status"] == "COMPLETED"
        assert "duration_ms" in finished.extra_fields

    def test_log_operation_failure(self, caplog):
        logger = get_logger("schemalens.test")
        with caplog.at_level(logging.INFO, logger="schemalens.test"):
            with pytest.raises(ValueError):
                with log_operation(logger, "relationship_inference"):
                    raise ValueError("bad reply")

        failed = caplog.records[-1]
        assert failed.levelname == "ERROR"
        assert failed.extra_fields["error_type"] == "ValueError"
