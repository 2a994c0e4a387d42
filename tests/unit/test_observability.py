"""Unit tests for structured logging and in-process metrics."""

import json
import logging

import pytest
import structlog

from src.nsxsync.observability.logger import (
    TRACE,
    VERBOSE,
    LogContext,
    _context_processor,
    _log_context,
    add_context,
    clear_all_context,
    clear_context,
    configure_logging,
    get_log_level,
)
from src.nsxsync.observability.metrics import (
    LoggerBackend,
    MetricsCollector,
    get_global_collector,
    reset_global_collector,
)


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo context fields and per-logger levels set by a test."""
    levels = {
        name: logger.level
        for name, logger in logging.root.manager.loggerDict.items()
        if isinstance(logger, logging.Logger)
    }
    clear_all_context()
    yield
    clear_all_context()
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


class TestLogLevels:
    """Test custom level registration and lookup."""

    @pytest.mark.parametrize(
        "name,expected",
        [("trace", TRACE), ("DEBUG", logging.DEBUG), ("verbose", VERBOSE), ("Info", logging.INFO)],
    )
    def test_get_log_level(self, name, expected):
        """Test names are matched case-insensitively."""
        assert get_log_level(name) == expected

    def test_unknown_level_defaults_to_info(self):
        """Test an unknown name falls back to INFO."""
        assert get_log_level("LOUD") == logging.INFO

    def test_custom_level_names(self):
        """Test TRACE and VERBOSE are known to stdlib logging."""
        assert logging.getLevelName(TRACE) == "TRACE"
        assert logging.getLevelName(VERBOSE) == "VERBOSE"


class TestConfigureLogging:
    """Test logging configuration."""

    def test_root_level(self):
        """Test the root logger takes the configured level."""
        configure_logging(level="VERBOSE")

        assert logging.getLogger().level == VERBOSE

    def test_json_file_output_with_context(self, tmp_path):
        """Test events reach the log file with bound context fields."""
        log_file = tmp_path / "nested" / "sync.log"
        configure_logging(level="INFO", json_logs=True, log_file=log_file)

        with LogContext(child_subnet="ns1/cs1"):
            structlog.get_logger("nsxsync.test_file_output").info("Reconcile finished", vlan=3)

        lines = [json.loads(line) for line in log_file.read_text().splitlines() if line.startswith("{")]
        event = next(line for line in lines if line["event"] == "Reconcile finished")
        assert event["child_subnet"] == "ns1/cs1"
        assert event["vlan"] == 3
        assert event["level"] == "info"

    def test_log_filter(self):
        """Test loggers outside the filter are raised to WARNING."""
        kept = logging.getLogger("nsxsync_filter.allocator")
        other = logging.getLogger("nsxsync_filter.client")

        configure_logging(level="DEBUG", log_filter="allocator, childsubnet")

        assert kept.level == logging.NOTSET
        assert other.level == logging.WARNING


class TestLogContext:
    """Test reconcile-scoped context fields."""

    def test_nested_blocks(self):
        """Test inner fields are dropped again on exit."""
        with LogContext(child_subnet="ns1/cs1"):
            with LogContext(vlan=5):
                assert _log_context.get() == {"child_subnet": "ns1/cs1", "vlan": 5}
            assert _log_context.get() == {"child_subnet": "ns1/cs1"}
        assert _log_context.get() == {}

    def test_add_and_clear(self):
        """Test fields bound for the rest of the task."""
        add_context(cluster="c1", kind="ChildSubnet")
        clear_context("kind")
        clear_context("missing")

        assert _log_context.get() == {"cluster": "c1"}

        clear_all_context()
        assert _log_context.get() == {}

    def test_processor_merges_fields(self):
        """Test the processor adds bound fields to the event."""
        add_context(cluster="c1")

        event = _context_processor(logging.getLogger("x"), "info", {"event": "hello"})

        assert event == {"event": "hello", "cluster": "c1"}


class TestLoggerBackend:
    """Test in-memory aggregation."""

    def test_series_names(self):
        """Test tags are rendered sorted into the series name."""
        backend = LoggerBackend()

        backend.increment("requests", tags={"method": "GET", "api": "search"})
        backend.increment("requests", tags={"api": "search", "method": "GET"})
        backend.increment("plain")

        assert backend.counters == {"requests[api=search,method=GET]": 2, "plain": 1}

    def test_summary(self):
        """Test gauges keep the last value and timings are aggregated."""
        backend = LoggerBackend()
        backend.gauge("items", 3)
        backend.gauge("items", 7)
        for value in (10.0, 20.0, 30.0):
            backend.timing("latency", value)

        summary = backend.get_summary()

        assert summary["gauges"] == {"items": 7}
        assert summary["timings"]["latency"] == {"count": 3, "avg": 20.0, "min": 10.0, "max": 30.0}


class TestMetricsCollector:
    """Test domain metric helpers."""

    def test_helpers(self):
        """Test reconcile counts, latencies and store sizes."""
        collector = MetricsCollector()

        collector.count_reconcile("ChildSubnet", "success")
        collector.count_reconcile("ChildSubnet", "success")
        collector.record_latency("childsubnet_reconcile", 12.5)
        collector.update_store_size("IPPoolStore", 4)

        summary = collector.get_summary()
        assert summary["counters"]["nsxsync_reconcile_total[kind=ChildSubnet,outcome=success]"] == 2
        assert summary["gauges"]["nsxsync_store_items[store=IPPoolStore]"] == 4.0
        timing = summary["timings"]["nsxsync_operation_duration_ms[operation=childsubnet_reconcile]"]
        assert timing["count"] == 1

    def test_unknown_backend(self):
        """Test an unknown backend name falls back to the logger backend."""
        assert isinstance(MetricsCollector(backend="statsd").backend, LoggerBackend)

    def test_global_collector(self):
        """Test the process-wide collector is shared until reset."""
        first = get_global_collector()

        assert get_global_collector() is first

        reset_global_collector()
        assert get_global_collector() is not first
