"""
metrics.py - Observability for the sync core.

Provides:
- Prometheus-compatible in-process metrics
- Structured JSON logging
- Health check with detailed status
"""

import json
import logging
import os
import shutil
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, List

import psutil


# =============================================================================
# Metric Types
# =============================================================================

@dataclass
class MetricValue:
    """Single metric value with labels."""
    name: str
    value: float
    labels: Dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class _LabelledMetric:
    def __init__(self, name: str, help_text: str, labels: List[str] = None):
        self.name = name
        self.help = help_text
        self.labels = labels or []
        self._values: Dict[tuple, float] = {}
        self._lock = threading.Lock()

    def get(self, **label_values) -> float:
        """Get current value."""
        key = self._label_key(label_values)
        return self._values.get(key, 0)

    def collect(self) -> List[MetricValue]:
        """Collect all values for export."""
        with self._lock:
            return [
                MetricValue(
                    name=self.name,
                    value=value,
                    labels=dict(zip(self.labels, key))
                )
                for key, value in self._values.items()
            ]

    def _label_key(self, label_values: dict) -> tuple:
        return tuple(label_values.get(l, "") for l in self.labels)


class Counter(_LabelledMetric):
    """Prometheus-style counter metric."""

    def inc(self, value: float = 1, **label_values) -> None:
        key = self._label_key(label_values)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + value


class Gauge(_LabelledMetric):
    """Prometheus-style gauge metric."""

    def set(self, value: float, **label_values) -> None:
        key = self._label_key(label_values)
        with self._lock:
            self._values[key] = value


class Histogram:
    """Prometheus-style histogram metric."""

    DEFAULT_BUCKETS = (
        0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5,
        1.0, 2.5, 5.0, 10.0, float('inf')
    )

    def __init__(
        self,
        name: str,
        help_text: str,
        labels: List[str] = None,
        buckets: tuple = None
    ):
        self.name = name
        self.help = help_text
        self.labels = labels or []
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._values: Dict[tuple, dict] = {}
        self._lock = threading.Lock()

    def observe(self, value: float, **label_values) -> None:
        key = tuple(label_values.get(l, "") for l in self.labels)

        with self._lock:
            if key not in self._values:
                self._values[key] = {
                    "count": 0,
                    "sum": 0.0,
                    "buckets": {b: 0 for b in self.buckets}
                }

            data = self._values[key]
            data["count"] += 1
            data["sum"] += value

            for bucket in self.buckets:
                if value <= bucket:
                    data["buckets"][bucket] += 1

    @contextmanager
    def time(self, **label_values):
        """Context manager to time an operation."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - start, **label_values)

    def count(self, **label_values) -> int:
        key = tuple(label_values.get(l, "") for l in self.labels)
        data = self._values.get(key)
        return data["count"] if data else 0

    def collect(self) -> List[MetricValue]:
        results = []

        with self._lock:
            for key, data in self._values.items():
                labels = dict(zip(self.labels, key))
                results.append(MetricValue(f"{self.name}_sum", data["sum"], labels))
                results.append(MetricValue(f"{self.name}_count", data["count"], labels))
                for le, count in data["buckets"].items():
                    results.append(MetricValue(
                        f"{self.name}_bucket", count, {**labels, "le": str(le)}
                    ))

        return results


# =============================================================================
# Metrics Registry
# =============================================================================

class MetricsRegistry:
    """Global metrics registry."""

    def __init__(self, prefix: str = "station_sync"):
        self.prefix = prefix
        self._metrics: Dict[str, Counter | Gauge | Histogram] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, help_text: str, labels: List[str] = None) -> Counter:
        """Register or get a counter metric."""
        return self._register(name, lambda full: Counter(full, help_text, labels))

    def gauge(self, name: str, help_text: str, labels: List[str] = None) -> Gauge:
        """Register or get a gauge metric."""
        return self._register(name, lambda full: Gauge(full, help_text, labels))

    def histogram(
        self,
        name: str,
        help_text: str,
        labels: List[str] = None,
        buckets: tuple = None
    ) -> Histogram:
        """Register or get a histogram metric."""
        return self._register(name, lambda full: Histogram(full, help_text, labels, buckets))

    def _register(self, name: str, factory: Callable):
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            if full_name not in self._metrics:
                self._metrics[full_name] = factory(full_name)
            return self._metrics[full_name]

    def collect_all(self) -> List[MetricValue]:
        results = []
        with self._lock:
            for metric in self._metrics.values():
                results.extend(metric.collect())
        return results

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        for metric in self.collect_all():
            if metric.labels:
                label_str = ",".join(
                    f'{k}="{v}"' for k, v in metric.labels.items()
                )
                lines.append(f"{metric.name}{{{label_str}}} {metric.value}")
            else:
                lines.append(f"{metric.name} {metric.value}")

        return "\n".join(lines)

    def export_json(self) -> dict:
        return {
            "metrics": [
                {
                    "name": m.name,
                    "value": m.value,
                    "labels": m.labels,
                    "timestamp": m.timestamp
                }
                for m in self.collect_all()
            ],
            "exported_at": time.time()
        }


# =============================================================================
# Pre-defined Sync Metrics
# =============================================================================

_registry = MetricsRegistry()

queries_total = _registry.counter(
    "queries_total",
    "Statements executed, by backend and kind",
    labels=["backend", "kind"]
)

fallbacks_total = _registry.counter(
    "fallbacks_total",
    "Remote failures recovered on the local store",
    labels=["kind"]
)

journaled_total = _registry.counter(
    "journaled_total",
    "Mutations appended to the sync queue",
    labels=["operation"]
)

replayed_total = _registry.counter(
    "replayed_total",
    "Queue entries replayed against the remote store",
    labels=["operation", "status"]
)

remote_latency_seconds = _registry.histogram(
    "remote_latency_seconds",
    "Remote call latency including retries",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float('inf'))
)

sync_duration_seconds = _registry.histogram(
    "sync_duration_seconds",
    "Duration of a full sync pass",
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, float('inf'))
)

pending_mutations = _registry.gauge(
    "pending_mutations",
    "Unsynced entries in the sync queue"
)

online = _registry.gauge(
    "online",
    "1 while the remote store is believed reachable"
)


def get_registry() -> MetricsRegistry:
    """Get the global metrics registry."""
    return _registry


# =============================================================================
# Structured Logging
# =============================================================================

_RESERVED_RECORD_KEYS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName'
))


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra
        self._hostname = os.environ.get("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self._hostname
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in _RESERVED_RECORD_KEYS:
                    log_data[key] = value

        return json.dumps(log_data, default=str)


class SyncLogger:
    """
    Structured logger for sync events.

    Each method logs one event and updates the matching metrics.
    """

    def __init__(self, name: str = "station_sync"):
        self._logger = logging.getLogger(name)

    def remote_fallback(self, kind: str, sql: str, error: str) -> None:
        self._logger.warning(
            f"Remote {kind} failed, falling back to local store: {error}",
            extra={
                "event": "remote_fallback",
                "kind": kind,
                "sql": sql[:200],
                "error": error
            }
        )
        fallbacks_total.inc(kind=kind)

    def mutation_journaled(self, entry_id: int, operation: str, table_name: str | None) -> None:
        self._logger.info(
            f"Journaled offline {operation} as entry {entry_id}",
            extra={
                "event": "mutation_journaled",
                "entry_id": entry_id,
                "operation": operation,
                "table_name": table_name
            }
        )
        journaled_total.inc(operation=operation)

    def entry_replayed(self, entry_id: int, operation: str, duplicate: bool = False) -> None:
        self._logger.debug(
            f"Replayed entry {entry_id} ({operation})"
            + (" - already present remotely" if duplicate else ""),
            extra={
                "event": "entry_replayed",
                "entry_id": entry_id,
                "operation": operation,
                "duplicate": duplicate
            }
        )
        replayed_total.inc(operation=operation, status="duplicate" if duplicate else "success")

    def entry_failed(self, entry_id: int, operation: str, error: str, retry_count: int) -> None:
        self._logger.error(
            f"Failed to replay entry {entry_id}: {error}",
            extra={
                "event": "entry_failed",
                "entry_id": entry_id,
                "operation": operation,
                "error": error,
                "retry_count": retry_count
            }
        )
        replayed_total.inc(operation=operation, status="failed")

    def sync_completed(self, synced: int, failed: int, duration_ms: float) -> None:
        self._logger.info(
            f"Sync completed: {synced} succeeded, {failed} failed",
            extra={
                "event": "sync_completed",
                "synced": synced,
                "failed": failed,
                "duration_ms": duration_ms
            }
        )
        sync_duration_seconds.observe(duration_ms / 1000)

    def connection_changed(self, is_online: bool, reason: str) -> None:
        self._logger.info(
            f"Connection {'restored' if is_online else 'lost'}: {reason}",
            extra={
                "event": "connection_changed",
                "online": is_online,
                "reason": reason
            }
        )
        online.set(1 if is_online else 0)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str = None
) -> None:
    """
    Configure logging for production.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON formatting
        log_file: Optional log file path
    """
    handlers = []

    console = logging.StreamHandler()
    if json_format:
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
    handlers.append(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=handlers,
        force=True
    )


# =============================================================================
# Health Checks
# =============================================================================

@dataclass
class HealthStatus:
    """Health check status."""
    healthy: bool
    checks: Dict[str, dict]
    timestamp: float = field(default_factory=time.time)


class HealthChecker:
    """
    Health checker for the station's local side.

    Supports:
    - Local database connectivity
    - Disk space for the database and its backups
    - Process memory
    """

    def __init__(self):
        self._checks: Dict[str, Callable[[], dict]] = {}

    def register_check(self, name: str, check_fn: Callable[[], dict]) -> None:
        """
        Register a health check.

        Check function should return:
        {"healthy": bool, "message": str, ...}
        """
        self._checks[name] = check_fn

    def check_all(self) -> HealthStatus:
        results = {}
        all_healthy = True

        for name, check_fn in self._checks.items():
            try:
                result = check_fn()
                results[name] = result
                if not result.get("healthy", False):
                    all_healthy = False
            except Exception as e:
                results[name] = {
                    "healthy": False,
                    "message": f"Check failed: {str(e)}"
                }
                all_healthy = False

        return HealthStatus(healthy=all_healthy, checks=results)

    def check_database(self, conn) -> dict:
        """Check database connectivity and latency."""
        try:
            start = time.perf_counter()
            conn.execute("SELECT 1").fetchone()
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "healthy": True,
                "message": "Database connected",
                "latency_ms": latency_ms
            }
        except Exception as e:
            return {
                "healthy": False,
                "message": f"Database error: {str(e)}"
            }

    def check_memory(self, threshold_mb: int = 1000) -> dict:
        process = psutil.Process()
        memory_mb = process.memory_info().rss / 1024 / 1024

        return {
            "healthy": memory_mb < threshold_mb,
            "message": f"Memory usage: {memory_mb:.1f} MB",
            "memory_mb": memory_mb,
            "threshold_mb": threshold_mb
        }

    def check_disk(self, path: str = ".", threshold_percent: int = 90) -> dict:
        try:
            total, used, free = shutil.disk_usage(path)
            used_percent = (used / total) * 100

            return {
                "healthy": used_percent < threshold_percent,
                "message": f"Disk usage: {used_percent:.1f}%",
                "used_percent": used_percent,
                "free_bytes": free
            }
        except OSError as e:
            return {
                "healthy": False,
                "message": f"Disk check failed: {str(e)}"
            }
