"""Tests for cluster_cleaner.controller.reconciler.

End-to-end passes through the real evaluator and orchestrator over an
in-memory store: fetch, decide, act, record.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cluster_cleaner.cascade import CascadeOrchestrator
from cluster_cleaner.controller.reconciler import ClusterReconciler
from cluster_cleaner.models.cluster import APP, CLUSTER, ObjectKey, Outcome
from cluster_cleaner.models.config import PolicyConfig, ProviderConfig
from cluster_cleaner.policy.evaluator import PolicyEvaluator
from cluster_cleaner.policy.ownership import OwnershipGuard
from cluster_cleaner.policy.time_policy import TimePolicy
from cluster_cleaner.provider.resolver import ProviderResolver
from cluster_cleaner.store.base import StoreError

from .conftest import (
    MARKERS,
    NOW,
    FakeMetrics,
    FakeNotifier,
    FakeStore,
    chart_annotations,
    make_app,
    make_cluster,
)

_KEY = ObjectKey("org-acme", "test")
_POLICY = PolicyConfig()


def _reconciler(
    store: FakeStore,
    metrics: FakeMetrics,
    notifier: FakeNotifier | None = None,
    provider_kind: str = "capa",
    dry_run: bool = False,
    now: datetime = NOW,
) -> ClusterReconciler:
    evaluator = PolicyEvaluator(
        TimePolicy(_POLICY.ttl, _POLICY.warn_ttl),
        OwnershipGuard(MARKERS),
        ProviderResolver(ProviderConfig(kind=provider_kind), MARKERS, store),
    )
    orchestrator = CascadeOrchestrator(store, MARKERS, dry_run=dry_run)
    return ClusterReconciler(
        store,
        evaluator,
        orchestrator,
        metrics,
        notifier=notifier,
        policy=_POLICY,
        dry_run=dry_run,
        clock=lambda: now,
    )


def _seed(store: FakeStore, **kwargs: object) -> None:
    store.put(CLUSTER, make_cluster(**kwargs))  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    async def test_expired_vintage_cluster_is_deleted(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=5))
        result = await _reconciler(store, metrics, provider_kind="aws").reconcile(_KEY)

        assert result.requeue_after is None
        assert store.mutations() == [("delete", "Cluster", "org-acme", "test", "Background")]
        assert metrics.records == [(Outcome.SUCCEEDED, "test", "org-acme")]

    async def test_expired_app_managed_cluster_cascades(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=5), annotations=chart_annotations())
        store.put(APP, make_app("test"))
        store.put(APP, make_app("test-default-apps"))
        await _reconciler(store, metrics).reconcile(_KEY)

        kinds = [call[1] for call in store.mutations()]
        assert kinds == ["App", "App", "ConfigMap", "Cluster"]
        assert metrics.outcomes() == [Outcome.SUCCEEDED]

    async def test_future_keep_until_ignored_with_daily_recheck(
        self, store: FakeStore, metrics: FakeMetrics
    ) -> None:
        _seed(store, age=timedelta(hours=5), labels={"keep-until": "2099-12-01"})
        result = await _reconciler(store, metrics).reconcile(_KEY)

        assert result.requeue_after == timedelta(hours=24)
        assert store.mutations() == []
        assert metrics.outcomes() == [Outcome.IGNORED]

    async def test_past_keep_until_is_deleted(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=5), labels={"keep-until": "2020-12-08"})
        await _reconciler(store, metrics, provider_kind="aws").reconcile(_KEY)

        assert not store.has(CLUSTER, "org-acme", "test")
        assert metrics.outcomes() == [Outcome.SUCCEEDED]

    async def test_gitops_primary_app_aborts_without_error(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=5), annotations=chart_annotations())
        store.put(APP, make_app("test", labels={MARKERS.gitops_label: "flux"}))
        result = await _reconciler(store, metrics).reconcile(_KEY)

        assert result.requeue_after is None
        assert store.mutations() == []
        assert store.has(CLUSTER, "org-acme", "test")
        assert Outcome.ERROR not in metrics.outcomes()

    async def test_dry_run_logs_intent_without_deleting(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=5))
        with patch("cluster_cleaner.controller.reconciler._log") as mock_log:
            await _reconciler(store, metrics, provider_kind="aws", dry_run=True).reconcile(_KEY)

        assert store.mutations() == []
        assert metrics.outcomes() == [Outcome.PENDING]
        mock_log.bind.return_value.info.assert_any_call(
            "cluster_deletion_intent", provider="aws", age_minutes=300, dry_run=True
        )


# ---------------------------------------------------------------------------
# Decision handling
# ---------------------------------------------------------------------------


class TestDecisionHandling:
    async def test_young_cluster_waits_without_notification(
        self, store: FakeStore, metrics: FakeMetrics, notifier: FakeNotifier
    ) -> None:
        _seed(store, age=timedelta(hours=1))
        result = await _reconciler(store, metrics, notifier).reconcile(_KEY)

        assert result.requeue_after == _POLICY.recheck_interval
        assert notifier.notices == []
        assert metrics.records == []

    async def test_warn_window_emits_one_notice(
        self, store: FakeStore, metrics: FakeMetrics, notifier: FakeNotifier
    ) -> None:
        _seed(store, age=timedelta(hours=3, minutes=15))
        result = await _reconciler(store, metrics, notifier).reconcile(_KEY)

        assert len(notifier.notices) == 1
        notice = notifier.notices[0]
        assert notice.cluster_name == "test"
        assert notice.minutes_remaining == 45
        assert notice.message == "Cluster org-acme/test will be deleted in aprox. 45 min."
        assert result.requeue_after == timedelta(minutes=45)
        assert metrics.outcomes() == [Outcome.PENDING]
        assert store.mutations() == []

    async def test_dry_run_warn_skips_notification(
        self, store: FakeStore, metrics: FakeMetrics, notifier: FakeNotifier
    ) -> None:
        _seed(store, age=timedelta(hours=3, minutes=15))
        await _reconciler(store, metrics, notifier, dry_run=True).reconcile(_KEY)

        assert notifier.notices == []
        assert metrics.outcomes() == [Outcome.PENDING]

    async def test_gitops_cluster_ignored_at_any_age(self, store: FakeStore, metrics: FakeMetrics) -> None:
        for age in (timedelta(hours=1), timedelta(hours=3, minutes=30), timedelta(days=10)):
            store.objects.clear()
            _seed(store, age=age, labels={MARKERS.gitops_label: "flux"})
            await _reconciler(store, metrics).reconcile(_KEY)

        assert metrics.outcomes() == [Outcome.IGNORED] * 3
        assert store.mutations() == []

    async def test_terminating_cluster_gets_no_second_delete(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=9), deleting=True)
        result = await _reconciler(store, metrics, provider_kind="aws").reconcile(_KEY)

        assert result.requeue_after is None
        assert store.mutations() == []
        assert metrics.outcomes() == [Outcome.IGNORED]

    async def test_malformed_keep_until_records_error_and_skips(
        self, store: FakeStore, metrics: FakeMetrics
    ) -> None:
        _seed(store, age=timedelta(hours=9), labels={"keep-until": "next-week"})
        result = await _reconciler(store, metrics, provider_kind="aws").reconcile(_KEY)

        assert result.requeue_after is None
        assert store.mutations() == []
        assert metrics.outcomes() == [Outcome.ERROR]


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_missing_cluster_is_done(self, store: FakeStore, metrics: FakeMetrics) -> None:
        result = await _reconciler(store, metrics).reconcile(_KEY)
        assert result.requeue_after is None
        assert metrics.records == []

    async def test_fetch_error_retries(self, store: FakeStore, metrics: FakeMetrics) -> None:
        store.fail[("get", "Cluster")] = StoreError("timeout", status=504)
        result = await _reconciler(store, metrics).reconcile(_KEY)

        assert result.requeue_after == _POLICY.retry_interval
        assert metrics.outcomes() == [Outcome.ERROR]

    async def test_cluster_without_creation_timestamp(self, store: FakeStore, metrics: FakeMetrics) -> None:
        raw = make_cluster()
        del raw["metadata"]["creationTimestamp"]
        store.put(CLUSTER, raw)
        result = await _reconciler(store, metrics).reconcile(_KEY)

        assert result.requeue_after is None
        assert metrics.outcomes() == [Outcome.ERROR]

    async def test_unresolvable_provider_fails_open(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=5))
        result = await _reconciler(store, metrics, provider_kind="").reconcile(_KEY)

        assert result.requeue_after == _POLICY.retry_interval
        assert store.mutations() == []
        assert metrics.outcomes() == [Outcome.ERROR]

    async def test_cascade_store_error_retries(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=5))
        store.fail[("delete", "Cluster")] = StoreError("conflict", status=409)
        result = await _reconciler(store, metrics, provider_kind="aws").reconcile(_KEY)

        assert result.requeue_after == _POLICY.retry_interval
        assert metrics.outcomes() == [Outcome.ERROR]

    async def test_notifier_failure_does_not_change_outcome(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=3, minutes=30))
        notifier = MagicMock()
        notifier.dispatch = AsyncMock(return_value=0)
        result = await _reconciler(store, metrics, notifier).reconcile(_KEY)  # type: ignore[arg-type]

        notifier.dispatch.assert_awaited_once()
        assert result.requeue_after == timedelta(minutes=30)
        assert metrics.outcomes() == [Outcome.PENDING]

    async def test_delete_decision_without_provider_raises(self, store: FakeStore, metrics: FakeMetrics) -> None:
        _seed(store, age=timedelta(hours=5))
        reconciler = _reconciler(store, metrics)
        real = reconciler._evaluator
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock(side_effect=lambda c, now: real.decide(c, now))
        reconciler._evaluator = evaluator

        with pytest.raises(RuntimeError, match="provider"):
            await reconciler.reconcile(_KEY)


# ---------------------------------------------------------------------------
# Warn notices
# ---------------------------------------------------------------------------


class TestWarnNotices:
    async def test_repeated_passes_in_same_hour_send_one_notice(
        self, store: FakeStore, metrics: FakeMetrics, notifier: FakeNotifier
    ) -> None:
        _seed(store, age=timedelta(hours=3, minutes=15))
        clock = [NOW]
        reconciler = _reconciler(store, metrics, notifier)
        reconciler._clock = lambda: clock[0]

        for offset in (0, 10, 20):
            clock[0] = NOW + timedelta(minutes=offset)
            await reconciler.reconcile(_KEY)

        assert len(notifier.notices) == 1
        assert metrics.outcomes() == [Outcome.PENDING] * 3

    async def test_recreated_cluster_is_notified_again(
        self, store: FakeStore, metrics: FakeMetrics, notifier: FakeNotifier
    ) -> None:
        _seed(store, age=timedelta(hours=3, minutes=15))
        reconciler = _reconciler(store, metrics, notifier)
        await reconciler.reconcile(_KEY)

        raw = make_cluster(age=timedelta(hours=3, minutes=5))
        raw["metadata"]["uid"] = "uid-test-recreated"
        store.put(CLUSTER, raw)
        await reconciler.reconcile(_KEY)

        assert len(notifier.notices) == 2
        assert notifier.notices[1].uid == "uid-test-recreated"

    async def test_gone_cluster_drops_notice_state(
        self, store: FakeStore, metrics: FakeMetrics, notifier: FakeNotifier
    ) -> None:
        _seed(store, age=timedelta(hours=3, minutes=15))
        reconciler = _reconciler(store, metrics, notifier)
        await reconciler.reconcile(_KEY)
        assert _KEY in reconciler._notified

        store.objects.clear()
        await reconciler.reconcile(_KEY)

        assert reconciler._notified == {}

    async def test_deleted_cluster_drops_notice_state(
        self, store: FakeStore, metrics: FakeMetrics, notifier: FakeNotifier
    ) -> None:
        _seed(store, age=timedelta(hours=3, minutes=15))
        reconciler = _reconciler(store, metrics, notifier, provider_kind="aws", now=NOW + timedelta(hours=1))
        reconciler._notified[_KEY] = ("uid-test", 3)

        await reconciler.reconcile(_KEY)

        assert store.mutations() == [("delete", "Cluster", "org-acme", "test", "Background")]
        assert reconciler._notified == {}

    async def test_dry_run_does_not_consume_the_window(
        self, store: FakeStore, metrics: FakeMetrics, notifier: FakeNotifier
    ) -> None:
        _seed(store, age=timedelta(hours=3, minutes=15))
        reconciler = _reconciler(store, metrics, notifier, dry_run=True)
        await reconciler.reconcile(_KEY)

        assert reconciler._notified == {}
