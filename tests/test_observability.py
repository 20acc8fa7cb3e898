"""
Tests for structured logging and metrics.
"""

import asyncio
import io
import logging

import pytest

from hnswrag.observability.logging import (
    clear_op_id,
    get_logger,
    get_op_id,
    new_op_id,
    setup_logging,
)
from hnswrag.observability.metrics import get_metrics_collector, timer


@pytest.fixture
def log_stream():
    stream = io.StringIO()
    setup_logging("DEBUG", stream=stream)
    return stream


class TestStructuredLogging:
    """Single-line key=value records."""

    def test_line_format(self, log_stream):
        get_logger("hnswrag.storage.bundle").info("Saved bundle", entries=12, path="/tmp/x")

        line = log_stream.getvalue().strip()
        assert line.startswith("t=")
        assert "level=INFO" in line
        assert "mod=bundle" in line
        assert 'msg="Saved bundle"' in line
        assert "entries=12" in line
        assert "path=/tmp/x" in line
        assert "op=-" in line

    def test_op_id_correlates_lines(self, log_stream):
        op_id = new_op_id()
        logger = get_logger("hnswrag.test")
        logger.info("one")
        logger.warning("two")
        clear_op_id()

        lines = log_stream.getvalue().strip().splitlines()
        assert len(lines) == 2
        assert all(f"op={op_id}" in line for line in lines)
        assert get_op_id() is None

    def test_timed_records_duration(self, log_stream):
        get_logger("hnswrag.test").timed("query done", 12.345)
        assert "ms=12.3" in log_stream.getvalue()

    def test_function_name_is_caller(self, log_stream):
        def do_work():
            get_logger("hnswrag.test").info("working")

        do_work()
        assert "fn=do_work" in log_stream.getvalue()

    def test_http_clients_are_quieted(self, log_stream):
        assert logging.getLogger("httpx").level == logging.WARNING


class TestMetrics:
    """Collector tallies and the timer."""

    def test_timer_records_outcome(self):
        with timer("load") as t:
            t["outcome"] = "not_found"

        assert get_metrics_collector().totals["load.not_found"] == 1

    def test_timer_marks_errors(self):
        with pytest.raises(RuntimeError):
            with timer("build"):
                raise RuntimeError("boom")

        assert get_metrics_collector().totals["build.error"] == 1

    def test_timer_marks_cancellation(self):
        with pytest.raises(asyncio.CancelledError):
            with timer("build"):
                raise asyncio.CancelledError

        totals = get_metrics_collector().totals
        assert totals["build.cancelled"] == 1
        assert "build.error" not in totals

    def test_inserts_and_failures(self):
        collector = get_metrics_collector()
        collector.record_inserts(10)
        collector.record_inserts(5)
        collector.record_collaborator_failure("fetch_failure")

        assert collector.totals["entries_inserted"] == 15
        assert collector.totals["failure.fetch_failure"] == 1
