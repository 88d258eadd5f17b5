"""Prometheus metrics instrumentation for the metadata synchronizer.

This module tracks:
- Bulk write throughput, latency and item failures
- Reindex phase runs and durations
- Broker message outcomes per mode
- Incremental update outcomes
"""

import functools
import time
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    start_http_server,
)

from metasync import __version__

SERVICE_INFO = Info("metasync", "Metadata synchronizer information")
SERVICE_INFO.info({"version": __version__, "service": "metasync"})

# ==================== Bulk Write Metrics ====================

INDEX_MUTATIONS = Counter(
    "metasync_index_mutations_total",
    "Index mutations enqueued for bulk submission",
    ["action"],
)

BULK_FLUSHES = Counter(
    "metasync_bulk_flushes_total",
    "Bulk requests submitted to the search index",
    ["status"],
)

BULK_FLUSH_LATENCY = Histogram(
    "metasync_bulk_flush_latency_seconds",
    "Bulk request latency in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

BULK_ITEM_FAILURES = Counter(
    "metasync_bulk_item_failures_total",
    "Individual bulk items rejected by the search index",
    ["action"],
)

# ==================== Sync Metrics ====================

OBJECTS_STREAMED = Counter(
    "metasync_objects_streamed_total",
    "Object metadata bundles read from the database",
)

SYNC_PHASE_RUNS = Counter(
    "metasync_sync_phase_runs_total",
    "Sync phase runs",
    ["phase", "status"],
)

SYNC_PHASE_LATENCY = Histogram(
    "metasync_sync_phase_latency_seconds",
    "Sync phase duration in seconds",
    ["phase"],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0],
)

INCREMENTAL_UPDATES = Counter(
    "metasync_incremental_updates_total",
    "Single-object updates by outcome",
    ["outcome"],
)

# ==================== Broker Metrics ====================

BROKER_MESSAGES = Counter(
    "metasync_broker_messages_total",
    "Broker messages handled",
    ["mode", "outcome"],
)

P = ParamSpec("P")
T = TypeVar("T")


def track_phase(phase: str) -> Callable[..., Any]:
    """Decorator to track the duration and status of a sync phase.

    Args:
            phase: Phase name (purge, rebuild, reindex).

    Returns:
            Decorated function.

    Example:
            @track_phase("purge")
            async def purge_index(self) -> int:
                    ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
                SYNC_PHASE_RUNS.labels(phase=phase, status="success").inc()
                return result

            except Exception:
                SYNC_PHASE_RUNS.labels(phase=phase, status="error").inc()
                raise

            finally:
                duration = time.perf_counter() - start_time
                SYNC_PHASE_LATENCY.labels(phase=phase).observe(duration)

        return wrapper

    return decorator


def record_mutation(action: str) -> None:
    """Record a mutation added to a bulk buffer.

    Args:
            action: Bulk action (index, delete).
    """
    INDEX_MUTATIONS.labels(action=action).inc()


def record_bulk_flush(success: bool, latency: float, failed_items: dict[str, int]) -> None:
    """Record a bulk submission.

    Args:
            success: Whether the request itself succeeded.
            latency: Request latency in seconds.
            failed_items: Rejected item counts keyed by action.
    """
    status = "success" if success else "error"
    BULK_FLUSHES.labels(status=status).inc()
    BULK_FLUSH_LATENCY.observe(latency)
    for action, count in failed_items.items():
        BULK_ITEM_FAILURES.labels(action=action).inc(count)


def record_object_streamed() -> None:
    """Record one object bundle read from the database."""
    OBJECTS_STREAMED.inc()


def record_incremental_update(outcome: str) -> None:
    """Record a single-object update.

    Args:
            outcome: indexed, deleted, skipped or failed.
    """
    INCREMENTAL_UPDATES.labels(outcome=outcome).inc()


def record_broker_message(mode: str, outcome: str) -> None:
    """Record a handled broker message.

    Args:
            mode: Worker mode that received the message.
            outcome: acked, rejected or requeued.
    """
    BROKER_MESSAGES.labels(mode=mode, outcome=outcome).inc()


# ==================== Metrics Endpoint ====================


def start_metrics_server(port: int) -> None:
    """Serve metrics over HTTP on the debug port.

    Args:
            port: Port to listen on (all interfaces).
    """
    start_http_server(port, addr="0.0.0.0")

