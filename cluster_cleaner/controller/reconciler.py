"""Reconcile entrypoint for Cluster resources.

One call handles one cluster key: fetch, evaluate, act, record. Everything
the decision needs is re-read from the cluster on every pass, so repeated or
overlapping triggers converge on the same result.

The only in-process state is the last warn window notified per cluster, so
resyncs and watch events inside the same hour do not resend the notice. It is
not persisted; a restart may send one extra notice.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol

from cluster_cleaner.cascade.orchestrator import CascadeOrchestrator, CascadeStatus
from cluster_cleaner.models.cluster import (
    CLUSTER,
    Action,
    ClusterResource,
    Decision,
    ObjectKey,
    Outcome,
    ReconcileResult,
)
from cluster_cleaner.models.config import PolicyConfig
from cluster_cleaner.models.notices import DeletionNotice
from cluster_cleaner.observability.logging import get_logger
from cluster_cleaner.observability.metrics import MetricsSink, reconcile_duration_seconds
from cluster_cleaner.policy.evaluator import PolicyEvaluator
from cluster_cleaner.provider.resolver import ProviderResolutionError
from cluster_cleaner.store.base import NotFoundError, ObjectStore, StoreError

_log = get_logger("reconciler")

_NOTICE_WINDOW = timedelta(hours=1)


class Notifier(Protocol):
    async def dispatch(self, notice: DeletionNotice) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ClusterReconciler:
    """Fetches a cluster, evaluates policy and dispatches the outcome.

    Args:
        store: Object store for reading the cluster.
        evaluator: Policy evaluator.
        orchestrator: Cascade orchestrator invoked on ``delete``.
        metrics: Outcome sink.
        notifier: Receives a DeletionNotice on ``warn``. Optional.
        policy: Supplies the retry interval for failed passes.
        dry_run: Skip notifications; the orchestrator must be built with the
            same flag to skip deletes.
        clock: Returns the current UTC time. Injected for tests.
    """

    def __init__(
        self,
        store: ObjectStore,
        evaluator: PolicyEvaluator,
        orchestrator: CascadeOrchestrator,
        metrics: MetricsSink,
        notifier: Notifier | None = None,
        policy: PolicyConfig | None = None,
        dry_run: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._evaluator = evaluator
        self._orchestrator = orchestrator
        self._metrics = metrics
        self._notifier = notifier
        self._policy = policy or PolicyConfig()
        self._dry_run = dry_run
        self._clock = clock
        # key -> (uid, whole hours of age) of the last notice sent
        self._notified: dict[ObjectKey, tuple[str, int]] = {}

    async def reconcile(self, key: ObjectKey) -> ReconcileResult:
        log = _log.bind(cluster=key.name, namespace=key.namespace)
        retry = ReconcileResult(requeue_after=self._policy.retry_interval)

        try:
            obj = await self._store.get(CLUSTER, key.namespace, key.name)
        except NotFoundError:
            log.debug("cluster_not_found")
            self._forget(key)
            return ReconcileResult()
        except StoreError as exc:
            log.error("cluster_fetch_failed", error=str(exc), status=exc.status)
            self._record(Outcome.ERROR, key)
            return retry

        try:
            cluster = ClusterResource.from_object(obj)
        except ValueError as exc:
            log.error("cluster_object_invalid", error=str(exc))
            self._record(Outcome.ERROR, key)
            return ReconcileResult()

        now = self._clock()
        started = time.monotonic()
        try:
            decision = await self._evaluator.evaluate(cluster, now)
        except ProviderResolutionError as exc:
            log.error("provider_resolution_failed", error=str(exc))
            self._record(Outcome.ERROR, key)
            return retry

        log.debug("decision", action=decision.action.value, reason=decision.reason)
        try:
            match decision.action:
                case Action.IGNORE:
                    return self._on_ignore(cluster, decision)
                case Action.WAIT:
                    return ReconcileResult(requeue_after=decision.requeue_after)
                case Action.WARN:
                    return await self._on_warn(cluster, decision, now)
                case Action.DELETE:
                    return await self._on_delete(cluster, decision)
        finally:
            reconcile_duration_seconds.labels(action=decision.action.value).observe(time.monotonic() - started)
        raise AssertionError(f"unhandled action {decision.action!r}")

    def _on_ignore(self, cluster: ClusterResource, decision: Decision) -> ReconcileResult:
        log = _log.bind(cluster=cluster.name, namespace=cluster.namespace)
        if decision.misconfigured:
            log.error("cluster_deletion_skipped_misconfigured", reason=decision.reason)
            self._record(Outcome.ERROR, cluster.key)
        else:
            log.info("cluster_deletion_ignored", reason=decision.reason)
            self._record(Outcome.IGNORED, cluster.key)
        return ReconcileResult(requeue_after=decision.requeue_after)

    async def _on_warn(self, cluster: ClusterResource, decision: Decision, now: datetime) -> ReconcileResult:
        log = _log.bind(cluster=cluster.name, namespace=cluster.namespace)
        self._record(Outcome.PENDING, cluster.key)
        notice = DeletionNotice(
            namespace=cluster.namespace,
            cluster_name=cluster.name,
            minutes_remaining=decision.minutes_remaining,
            uid=cluster.uid,
        )
        window = (cluster.uid, (now - cluster.created_at) // _NOTICE_WINDOW)
        if self._dry_run:
            log.info("dry_run_skip_notification", message=notice.message)
        elif self._notified.get(cluster.key) == window:
            log.debug("notification_already_sent", window_hour=window[1])
        else:
            log.info("cluster_marked_for_deletion", minutes_remaining=max(0, decision.minutes_remaining))
            self._notified[cluster.key] = window
            if self._notifier is not None:
                await self._notifier.dispatch(notice)
        return ReconcileResult(requeue_after=decision.requeue_after)

    async def _on_delete(self, cluster: ClusterResource, decision: Decision) -> ReconcileResult:
        log = _log.bind(cluster=cluster.name, namespace=cluster.namespace)
        if decision.provider is None:
            raise RuntimeError("delete decision without a resolved provider")

        log.info(
            "cluster_deletion_intent",
            provider=decision.provider.kind,
            age_minutes=int((self._clock() - cluster.created_at).total_seconds() / 60),
            dry_run=self._dry_run,
        )
        result = await self._orchestrator.run(cluster, decision.provider)

        match result.status:
            case CascadeStatus.SUCCEEDED:
                if self._dry_run:
                    self._record(Outcome.PENDING, cluster.key)
                else:
                    log.info("cluster_deletion_requested")
                    self._forget(cluster.key)
                    self._record(Outcome.SUCCEEDED, cluster.key)
                return ReconcileResult()
            case CascadeStatus.ABORTED:
                self._record(Outcome.IGNORED, cluster.key)
                return ReconcileResult()
            case CascadeStatus.RETRY:
                self._record(Outcome.ERROR, cluster.key)
                return ReconcileResult(requeue_after=result.requeue_after or self._policy.retry_interval)
        raise AssertionError(f"unhandled cascade status {result.status!r}")

    def _record(self, outcome: Outcome, key: ObjectKey) -> None:
        self._metrics.record(outcome, key.name, key.namespace)

    def _forget(self, key: ObjectKey) -> None:
        self._notified.pop(key, None)
