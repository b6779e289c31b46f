"""Prometheus metrics for cluster-cleaner."""

from __future__ import annotations

from typing import Protocol

from prometheus_client import Counter, Gauge, Histogram

from cluster_cleaner.models.cluster import Outcome

_COUNTER_LABELS = ["cluster_id", "cluster_namespace"]

# Deletion outcome counters
deletion_ignored_total = Counter(
    "cluster_cleaner_cluster_deletion_ignored_total",
    "Number of all ignored cluster deletion",
    _COUNTER_LABELS,
)

deletion_pending_total = Counter(
    "cluster_cleaner_cluster_deletion_pending_total",
    "Number of all pending cluster deletion",
    _COUNTER_LABELS,
)

deletion_errors_total = Counter(
    "cluster_cleaner_cluster_deletion_errors_total",
    "Number of all failed cluster deletion",
    _COUNTER_LABELS,
)

deletion_succeeded_total = Counter(
    "cluster_cleaner_cluster_deletion_succeeded_total",
    "Number of all clusters that were deleted successfully",
    _COUNTER_LABELS,
)

# Reconcile metrics
reconcile_duration_seconds = Histogram(
    "cluster_cleaner_reconcile_duration_seconds",
    "Reconciliation duration in seconds",
    ["action"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

reconcile_queue_depth = Gauge(
    "cluster_cleaner_reconcile_queue_depth",
    "Number of cluster keys waiting for reconciliation",
)

# Notification metrics
notifications_total = Counter(
    "cluster_cleaner_notifications_total",
    "Total notifications sent",
    ["channel", "success"],
)

# Watcher metrics
watcher_events_total = Counter(
    "cluster_cleaner_watcher_events_total",
    "Total watch events received by type",
    ["watcher", "event_type"],
)

watcher_errors_total = Counter(
    "cluster_cleaner_watcher_errors_total",
    "Total watcher errors",
    ["watcher", "status_code"],
)

watcher_relistings_total = Counter(
    "cluster_cleaner_watcher_relistings_total",
    "Total watcher relist operations",
    ["watcher", "reason"],
)


class MetricsSink(Protocol):
    """Side-effect sink for terminal reconciliation outcomes."""

    def record(self, outcome: Outcome, cluster_id: str, namespace: str) -> None: ...


class PrometheusMetricsSink:
    """Routes outcomes to the module-level Prometheus counters."""

    def __init__(self) -> None:
        self._counters: dict[Outcome, Counter] = {
            Outcome.IGNORED: deletion_ignored_total,
            Outcome.PENDING: deletion_pending_total,
            Outcome.ERROR: deletion_errors_total,
            Outcome.SUCCEEDED: deletion_succeeded_total,
        }

    def record(self, outcome: Outcome, cluster_id: str, namespace: str) -> None:
        self._counters[outcome].labels(cluster_id=cluster_id, cluster_namespace=namespace).inc()
