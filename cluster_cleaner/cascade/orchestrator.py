"""Cascade orchestrator: ordered, idempotent deletion of a cluster.

Vintage clusters are a single background delete of the Cluster object; the
API server garbage-collects its dependents.

Application-managed clusters are rendered from Apps, so the dependents are
removed first, in this fixed order::

    resolve-primary-app -> check-primary-app -> check-default-apps
        -> delete-primary-app -> delete-default-apps -> delete-config-maps
        -> delete-cluster

Every ownership check runs before the first delete, so an abort leaves the
cluster and all of its dependents in place.

Each step treats "not found" as already done, so a cascade interrupted at
any point converges on the next reconciliation. A step may abort the
cascade (nothing further is deleted, no error), or fail with a store error
(the cascade stops and asks to be retried after a fixed delay).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import assert_never

from cluster_cleaner.models.cluster import (
    APP,
    CLUSTER,
    CONFIG_MAP,
    ApplicationManaged,
    ClusterResource,
    ObjectKey,
    Provider,
    ResourceKind,
    Vintage,
)
from cluster_cleaner.models.config import MarkerConfig
from cluster_cleaner.observability.logging import get_logger
from cluster_cleaner.store.base import BACKGROUND, NotFoundError, ObjectStore, StoreError

_log = get_logger("cascade")


class CascadeStatus(StrEnum):
    SUCCEEDED = "succeeded"
    ABORTED = "aborted"
    RETRY = "retry"


@dataclass(frozen=True)
class CascadeResult:
    """Terminal state of one cascade run."""

    status: CascadeStatus
    step: str = ""
    reason: str = ""
    requeue_after: timedelta | None = None
    error: StoreError | None = None


@dataclass
class _CascadeState:
    """Values discovered by earlier steps and consumed by later ones."""

    cluster: ClusterResource
    primary_app: ObjectKey | None = None
    primary_app_present: bool = False
    default_apps: ObjectKey | None = None


# A step returns None to continue, or an abort reason.
_Step = Callable[[_CascadeState], Awaitable[str | None]]


class CascadeOrchestrator:
    """Executes the provider-specific deletion sequence.

    Args:
        store: Object store used for every read and delete.
        markers: Label and annotation keys (GitOps marker, chart annotations,
            cluster ownership label).
        retry_interval: Requeue delay returned on store errors.
        dry_run: Perform reads but only log the deletes that would be issued.
    """

    def __init__(
        self,
        store: ObjectStore,
        markers: MarkerConfig,
        retry_interval: timedelta = timedelta(minutes=5),
        dry_run: bool = False,
    ) -> None:
        self._store = store
        self._markers = markers
        self._retry_interval = retry_interval
        self._dry_run = dry_run

    async def run(self, cluster: ClusterResource, provider: Provider) -> CascadeResult:
        steps: list[tuple[str, _Step]]
        match provider:
            case Vintage():
                steps = [("delete-cluster", self._delete_cluster)]
            case ApplicationManaged():
                steps = [
                    ("resolve-primary-app", self._resolve_primary_app),
                    ("check-primary-app", self._check_primary_app),
                    ("check-default-apps", self._check_default_apps),
                    ("delete-primary-app", self._delete_primary_app),
                    ("delete-default-apps", self._delete_default_apps),
                    ("delete-config-maps", self._delete_config_maps),
                    ("delete-cluster", self._delete_cluster),
                ]
            case _:
                assert_never(provider)

        log = _log.bind(cluster=cluster.name, namespace=cluster.namespace, provider=provider.kind)
        state = _CascadeState(cluster=cluster)

        for name, step in steps:
            try:
                abort_reason = await step(state)
            except StoreError as exc:
                log.error("cascade_step_failed", step=name, error=str(exc), status=exc.status)
                return CascadeResult(
                    CascadeStatus.RETRY,
                    step=name,
                    reason=str(exc),
                    requeue_after=self._retry_interval,
                    error=exc,
                )
            if abort_reason is not None:
                log.info("cascade_aborted", step=name, reason=abort_reason)
                return CascadeResult(CascadeStatus.ABORTED, step=name, reason=abort_reason)

        log.info("cascade_completed", steps=len(steps), dry_run=self._dry_run)
        return CascadeResult(CascadeStatus.SUCCEEDED, step=steps[-1][0])

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _resolve_primary_app(self, state: _CascadeState) -> str | None:
        annotations = state.cluster.annotations
        name = annotations.get(self._markers.release_name_annotation, "")
        namespace = annotations.get(self._markers.release_namespace_annotation, "")
        if not name or not namespace:
            _log.warning(
                "cluster_missing_chart_annotations",
                cluster=state.cluster.name,
                namespace=state.cluster.namespace,
            )
            return "cluster has no chart release annotations"
        state.primary_app = ObjectKey(namespace, name)
        return None

    async def _check_primary_app(self, state: _CascadeState) -> str | None:
        assert state.primary_app is not None
        try:
            app = await self._store.get(APP, *state.primary_app)
        except NotFoundError:
            _log.debug("primary_app_not_found", app=str(state.primary_app))
            return None
        if self._is_gitops_managed(app):
            return f"App {state.primary_app} is managed by GitOps"
        state.primary_app_present = True
        return None

    async def _delete_primary_app(self, state: _CascadeState) -> str | None:
        if state.primary_app is None or not state.primary_app_present:
            return None
        await self._delete(APP, state.primary_app)
        return None

    async def _check_default_apps(self, state: _CascadeState) -> str | None:
        assert state.primary_app is not None
        key = ObjectKey(state.primary_app.namespace, f"{state.cluster.name}-default-apps")
        try:
            app = await self._store.get(APP, *key)
        except NotFoundError:
            _log.debug("default_apps_not_found", app=str(key))
            return None
        if self._is_gitops_managed(app):
            return f"App {key} is managed by GitOps"
        state.default_apps = key
        return None

    async def _delete_default_apps(self, state: _CascadeState) -> str | None:
        if state.default_apps is not None:
            await self._delete(APP, state.default_apps)
        return None

    async def _delete_config_maps(self, state: _CascadeState) -> str | None:
        selector = f"{self._markers.cluster_label}={state.cluster.name}"
        if self._dry_run:
            _log.info(
                "dry_run_skip_delete_collection",
                kind=CONFIG_MAP.kind,
                namespace=state.cluster.namespace,
                selector=selector,
            )
            return None
        await self._store.delete_by_selector(CONFIG_MAP, state.cluster.namespace, selector, propagation=BACKGROUND)
        _log.info("config_maps_deleted", namespace=state.cluster.namespace, selector=selector)
        return None

    async def _delete_cluster(self, state: _CascadeState) -> str | None:
        await self._delete(CLUSTER, state.cluster.key)
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _delete(self, kind: ResourceKind, key: ObjectKey) -> None:
        """Background delete of one object; a missing object counts as deleted."""
        if self._dry_run:
            _log.info("dry_run_skip_delete", kind=kind.kind, object=str(key))
            return
        try:
            await self._store.delete(kind, key.namespace, key.name, propagation=BACKGROUND)
        except NotFoundError:
            _log.debug("already_deleted", kind=kind.kind, object=str(key))
            return
        _log.info("deletion_requested", kind=kind.kind, object=str(key))

    def _is_gitops_managed(self, obj: dict[str, object]) -> bool:
        metadata = obj.get("metadata")
        labels = metadata.get("labels") if isinstance(metadata, dict) else None
        return isinstance(labels, dict) and self._markers.gitops_label in labels
