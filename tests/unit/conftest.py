"""Shared fakes for cluster-cleaner unit tests.

``FakeStore`` is an in-memory ObjectStore that records every call in order,
so tests can assert on the exact sequence of deletes.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from cluster_cleaner.models.cluster import APP, CLUSTER, CONFIG_MAP, Outcome, ResourceKind
from cluster_cleaner.models.config import MarkerConfig
from cluster_cleaner.models.notices import DeletionNotice
from cluster_cleaner.store.base import BACKGROUND, NotFoundError, StoreError

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)
MARKERS = MarkerConfig()


def make_cluster(
    name: str = "test",
    namespace: str = "org-acme",
    age: timedelta = timedelta(hours=5),
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    deleting: bool = False,
    now: datetime = NOW,
) -> dict[str, Any]:
    """Raw Cluster object as the custom objects API returns it."""
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "uid": f"uid-{name}",
        "resourceVersion": "42",
        "creationTimestamp": (now - age).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "labels": dict(labels or {}),
        "annotations": dict(annotations or {}),
    }
    if deleting:
        metadata["deletionTimestamp"] = now.strftime("%Y-%m-%dT%H:%M:%SZ")
    return {"apiVersion": CLUSTER.api_version, "kind": CLUSTER.kind, "metadata": metadata}


def chart_annotations(release: str = "test", release_namespace: str = "org-acme") -> dict[str, str]:
    return {
        MARKERS.release_name_annotation: release,
        MARKERS.release_namespace_annotation: release_namespace,
    }


def make_app(name: str, namespace: str = "org-acme", labels: dict[str, str] | None = None) -> dict[str, Any]:
    return {
        "apiVersion": APP.api_version,
        "kind": APP.kind,
        "metadata": {"name": name, "namespace": namespace, "labels": dict(labels or {})},
    }


def make_config_map(
    name: str,
    namespace: str = "org-acme",
    labels: dict[str, str] | None = None,
    data: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": CONFIG_MAP.kind,
        "metadata": {"name": name, "namespace": namespace, "labels": dict(labels or {})},
        "data": dict(data or {}),
    }


class FakeStore:
    """In-memory ObjectStore recording calls as tuples.

    ``fail[(verb, kind_name)] = StoreError(...)`` makes that call raise.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.fail: dict[tuple[str, str], StoreError] = {}

    def put(self, kind: ResourceKind, obj: dict[str, Any]) -> None:
        meta = obj["metadata"]
        self.objects[(kind.kind, meta["namespace"], meta["name"])] = obj

    def has(self, kind: ResourceKind, namespace: str, name: str) -> bool:
        return (kind.kind, namespace, name) in self.objects

    def _maybe_fail(self, verb: str, kind: ResourceKind) -> None:
        err = self.fail.get((verb, kind.kind))
        if err is not None:
            raise err

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        self.calls.append(("get", kind.kind, namespace, name))
        self._maybe_fail("get", kind)
        try:
            return self.objects[(kind.kind, namespace, name)]
        except KeyError:
            raise NotFoundError(kind, namespace, name) from None

    async def delete(self, kind: ResourceKind, namespace: str, name: str, propagation: str = BACKGROUND) -> None:
        self.calls.append(("delete", kind.kind, namespace, name, propagation))
        self._maybe_fail("delete", kind)
        if self.objects.pop((kind.kind, namespace, name), None) is None:
            raise NotFoundError(kind, namespace, name)

    async def delete_by_selector(
        self,
        kind: ResourceKind,
        namespace: str,
        label_selector: str,
        propagation: str = BACKGROUND,
    ) -> None:
        self.calls.append(("delete_by_selector", kind.kind, namespace, label_selector, propagation))
        self._maybe_fail("delete_by_selector", kind)
        label, _, value = label_selector.partition("=")
        for key, obj in list(self.objects.items()):
            if key[0] == kind.kind and key[1] == namespace and obj["metadata"].get("labels", {}).get(label) == value:
                del self.objects[key]

    async def list(self, kind: ResourceKind, namespace: str = "") -> tuple[list[dict[str, Any]], str]:
        self.calls.append(("list", kind.kind, namespace))
        self._maybe_fail("list", kind)
        items = [obj for key, obj in self.objects.items() if key[0] == kind.kind and (not namespace or key[1] == namespace)]
        return items, "100"

    def mutations(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0].startswith("delete")]


class FakeMetrics:
    def __init__(self) -> None:
        self.records: list[tuple[Outcome, str, str]] = []

    def record(self, outcome: Outcome, cluster_id: str, namespace: str) -> None:
        self.records.append((outcome, cluster_id, namespace))

    def outcomes(self) -> list[Outcome]:
        return [r[0] for r in self.records]


class FakeNotifier:
    def __init__(self) -> None:
        self.notices: list[DeletionNotice] = []

    async def dispatch(self, notice: DeletionNotice) -> int:
        self.notices.append(notice)
        return 1


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def metrics() -> FakeMetrics:
    return FakeMetrics()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()
