"""In-process metrics for API calls, reconciles and store sizes."""

from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class MetricsBackend(ABC):
    """Sink for counters, gauges and timings."""

    @abstractmethod
    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        pass

    @abstractmethod
    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass

    @abstractmethod
    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass


class LoggerBackend(MetricsBackend):
    """Aggregates values in memory; ``get_summary`` is logged or printed by callers."""

    def __init__(self) -> None:
        self.counters: Counter[str] = Counter()
        self.gauges: dict[str, float] = {}
        self.timings: dict[str, list[float]] = defaultdict(list)

    @staticmethod
    def _series(name: str, tags: dict[str, str] | None) -> str:
        if not tags:
            return name
        labels = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}[{labels}]"

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.counters[self._series(name, tags)] += value

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.gauges[self._series(name, tags)] = value

    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.timings[self._series(name, tags)].append(value)

    def get_summary(self) -> dict[str, Any]:
        timings = {
            series: {
                "count": len(values),
                "avg": sum(values) / len(values),
                "min": min(values),
                "max": max(values),
            }
            for series, values in self.timings.items()
            if values
        }
        return {"counters": dict(self.counters), "gauges": dict(self.gauges), "timings": timings}


class MetricsCollector:
    """Domain-level metric helpers on top of a backend."""

    def __init__(self, backend: str = "logger") -> None:
        if backend != "logger":
            logger.warning("Unknown metrics backend, defaulting to logger", backend=backend)
        self.backend: MetricsBackend = LoggerBackend()

    def count_reconcile(self, kind: str, outcome: str) -> None:
        """Record a reconcile outcome ("success", "error", "requeue", "noop")."""
        self.backend.increment("nsxsync_reconcile_total", tags={"kind": kind, "outcome": outcome})

    def record_latency(self, operation: str, duration_ms: float) -> None:
        self.backend.timing("nsxsync_operation_duration_ms", duration_ms, tags={"operation": operation})

    def update_store_size(self, store: str, size: int) -> None:
        self.backend.gauge("nsxsync_store_items", float(size), tags={"store": store})

    def get_summary(self) -> dict[str, Any]:
        if isinstance(self.backend, LoggerBackend):
            return self.backend.get_summary()
        return {}


_GLOBAL_COLLECTOR: MetricsCollector | None = None


def get_global_collector() -> MetricsCollector:
    """Get or create the process-wide collector."""
    global _GLOBAL_COLLECTOR
    if _GLOBAL_COLLECTOR is None:
        _GLOBAL_COLLECTOR = MetricsCollector()
    return _GLOBAL_COLLECTOR


def reset_global_collector() -> None:
    """Drop the process-wide collector (tests)."""
    global _GLOBAL_COLLECTOR
    _GLOBAL_COLLECTOR = None
