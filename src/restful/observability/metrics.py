"""Engine metrics: request, phase and poll counters plus latency timings.

Values are aggregated in memory and written to the log when a run ends.
Keys carry their tags in sorted order, e.g.
``restful_phase_total[outcome=done,phase=create]``.
"""

import statistics
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

Tags = dict[str, str] | None


def metric_key(name: str, tags: Tags = None) -> str:
    if not tags:
        return name
    rendered = ",".join(f"{key}={value}" for key, value in sorted(tags.items()))
    return f"{name}[{rendered}]"


class MetricsBackend(ABC):
    """Sink for counters and timings."""

    @abstractmethod
    def increment(self, name: str, value: int = 1, tags: Tags = None) -> None: ...

    @abstractmethod
    def timing(self, name: str, value: float, tags: Tags = None) -> None: ...

    @abstractmethod
    def get_summary(self) -> dict[str, Any]: ...


class LoggerBackend(MetricsBackend):
    """Keep everything in memory; the summary goes to the log."""

    def __init__(self) -> None:
        self.counters: Counter[str] = Counter()
        self.timings: defaultdict[str, list[float]] = defaultdict(list)

    def increment(self, name: str, value: int = 1, tags: Tags = None) -> None:
        self.counters[metric_key(name, tags)] += value

    def timing(self, name: str, value: float, tags: Tags = None) -> None:
        self.timings[metric_key(name, tags)].append(value)

    def get_summary(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "timings": {
                key: {
                    "count": len(values),
                    "avg": statistics.fmean(values),
                    "min": min(values),
                    "max": max(values),
                }
                for key, values in self.timings.items()
                if values
            },
        }


_BACKENDS: dict[str, type[MetricsBackend]] = {"logger": LoggerBackend}


class MetricsCollector:
    """Typed recording methods over a backend."""

    def __init__(self, backend: str = "logger") -> None:
        backend_cls = _BACKENDS.get(backend)
        if backend_cls is None:
            logger.warning("Unknown metrics backend, using 'logger'", backend=backend)
            backend_cls = LoggerBackend
        self.backend: MetricsBackend = backend_cls()

    # API requests

    def count_request(self, method: str) -> None:
        self.backend.increment("restful_api_requests_total", tags={"method": method})

    def record_request_latency(self, method: str, duration_ms: float) -> None:
        self.backend.timing("restful_api_latency_ms", duration_ms, tags={"method": method})

    # Lifecycle phases

    def count_phase(self, phase: str, outcome: str) -> None:
        """Count a finished phase by outcome (done, failed, gone)."""
        self.backend.increment("restful_phase_total", tags={"phase": phase, "outcome": outcome})

    def record_phase_latency(self, phase: str, duration_ms: float) -> None:
        self.backend.timing("restful_phase_duration_ms", duration_ms, tags={"phase": phase})

    # Polling

    def count_poll(self, status: str) -> None:
        self.backend.increment("restful_poll_attempts_total", tags={"status": status})

    def get_summary(self) -> dict[str, Any]:
        return self.backend.get_summary()

    def log_summary(self) -> None:
        summary = self.get_summary()
        if summary["counters"] or summary["timings"]:
            logger.info("Run metrics", **summary)


_GLOBAL_COLLECTOR: MetricsCollector | None = None


def get_global_collector() -> MetricsCollector:
    """Return the process-wide collector, creating it on first use."""
    global _GLOBAL_COLLECTOR
    if _GLOBAL_COLLECTOR is None:
        _GLOBAL_COLLECTOR = MetricsCollector()
    return _GLOBAL_COLLECTOR


def reset_global_collector() -> None:
    global _GLOBAL_COLLECTOR
    _GLOBAL_COLLECTOR = None
