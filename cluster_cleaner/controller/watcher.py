"""Watch Cluster API ``Cluster`` objects and feed their keys to the reconcile queue.

Every ADDED or MODIFIED event enqueues the cluster's key. The watch resumes
from the last seen resourceVersion; when the server reports that version as
expired (410 Gone), or after repeated failures, the watcher relists every
cluster instead. Other failures back off exponentially between 1 s and 60 s.

:meth:`ClusterWatcher.resync` is also called periodically by the app so
that TTLs keep advancing for clusters that never change.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from cluster_cleaner.models.cluster import CLUSTER, ObjectKey
from cluster_cleaner.observability.logging import get_logger
from cluster_cleaner.observability.metrics import (
    watcher_errors_total,
    watcher_events_total,
    watcher_relistings_total,
)
from cluster_cleaner.store.base import ObjectStore, StoreError

_WATCHER = "cluster"
_RELIST_AFTER_FAILURES = 3
_ENQUEUE_EVENTS = frozenset({"ADDED", "MODIFIED"})


@dataclass
class _Backoff:
    """Exponential delay with a failure counter."""

    initial: float = 1.0
    maximum: float = 60.0
    factor: float = 2.0
    delay: float = 1.0
    failures: int = 0

    def fail(self) -> int:
        self.failures += 1
        return self.failures

    def next_delay(self) -> float:
        current = min(self.delay, self.maximum)
        self.delay = min(self.delay * self.factor, self.maximum)
        return current

    def reset(self) -> None:
        self.delay = self.initial
        self.failures = 0


class ClusterWatcher:
    """Turns Cluster watch events into reconcile requests.

    Args:
        custom_api: A kubernetes_asyncio ``CustomObjectsApi`` instance.
        store: Used for full relists.
        enqueue: Called with the key of every cluster that needs a pass.
        namespace: Restrict to one namespace; empty watches all namespaces.
    """

    def __init__(
        self,
        custom_api: Any,
        store: ObjectStore,
        enqueue: Callable[[ObjectKey], None],
        namespace: str = "",
    ) -> None:
        self._api = custom_api
        self._store = store
        self._enqueue = enqueue
        self._namespace = namespace
        self._log = get_logger("watcher").bind(watcher=_WATCHER)

        self._resource_version = ""
        self._backoff = _Backoff()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Enqueue every existing cluster, then follow changes in the background."""
        if self.running:
            return
        await self.resync(reason="startup")
        self._task = asyncio.create_task(self._follow(), name="cluster-watcher")
        self._log.info("watcher_started", namespace=self._namespace or "*")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._log.info("watcher_stopped")

    async def resync(self, reason: str = "periodic") -> int:
        """List all clusters, enqueue each one and restart the watch from the list.

        Returns the number of clusters enqueued. A failed list is logged and
        leaves the watch position untouched.
        """
        watcher_relistings_total.labels(watcher=_WATCHER, reason=reason).inc()
        try:
            items, resource_version = await self._store.list(CLUSTER, self._namespace)
        except StoreError as exc:
            self._log.error("relist_failed", reason=reason, error=str(exc), status=exc.status)
            return 0

        keys = [key for key in map(_object_key, items) if key is not None]
        for key in keys:
            self._enqueue(key)
        if resource_version:
            self._resource_version = resource_version
        self._log.info("relist_complete", reason=reason, clusters=len(keys))
        return len(keys)

    # ------------------------------------------------------------------
    # Watch stream
    # ------------------------------------------------------------------

    def _list_call(self) -> tuple[Any, tuple[str, ...]]:
        if self._namespace:
            return self._api.list_namespaced_custom_object, (
                CLUSTER.group,
                CLUSTER.version,
                self._namespace,
                CLUSTER.plural,
            )
        return self._api.list_cluster_custom_object, (CLUSTER.group, CLUSTER.version, CLUSTER.plural)

    async def _follow(self) -> None:
        """Reopen the watch stream until cancelled."""
        while True:
            try:
                await self._stream_once()
            except asyncio.CancelledError:
                raise
            except ApiException as exc:
                await self._on_api_error(exc)
            except Exception as exc:
                self._log.error(
                    "watch_unexpected_error",
                    error=str(exc),
                    failures=self._backoff.fail(),
                    exc_info=True,
                )
                await self._recover("unexpected")

    async def _stream_once(self) -> None:
        """Consume one watch stream until the server closes it."""
        func, args = self._list_call()
        kwargs: dict[str, Any] = {"allow_watch_bookmarks": True}
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        stream = watch.Watch()
        received = 0
        try:
            async for event in stream.stream(func, *args, **kwargs):
                received += 1
                await self._on_event(event)
        finally:
            await stream.close()

        if received:
            self._backoff.reset()
            return
        # Closed without a single event; treat as a failure so a flapping server cannot spin.
        self._backoff.fail()
        await self._recover("stream_end")

    async def _on_event(self, event: dict[str, Any]) -> None:
        event_type = str(event.get("type", ""))
        obj = event.get("raw_object") or event.get("object") or {}
        if not isinstance(obj, dict):
            return
        watcher_events_total.labels(watcher=_WATCHER, event_type=event_type).inc()

        if event_type == "ERROR":
            if obj.get("code") == 410:
                await self._relist_expired()
            else:
                self._log.warning("watch_error_event", code=obj.get("code"), message=obj.get("message", ""))
            return

        resource_version = (obj.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            self._resource_version = str(resource_version)
        self._backoff.failures = 0

        if event_type in _ENQUEUE_EVENTS:
            key = _object_key(obj)
            if key is not None:
                self._enqueue(key)

    async def _on_api_error(self, exc: ApiException) -> None:
        watcher_errors_total.labels(watcher=_WATCHER, status_code=str(exc.status)).inc()
        if exc.status == 410:
            await self._relist_expired()
            return
        failures = self._backoff.fail()
        self._log.warning("watch_api_error", status=exc.status, reason=exc.reason, failures=failures)
        await self._recover(str(exc.status))

    async def _relist_expired(self) -> None:
        """The stored resourceVersion is too old; start over from a fresh list."""
        self._log.warning("watch_resource_version_expired", resource_version=self._resource_version)
        self._resource_version = ""
        await self.resync(reason="410")

    async def _recover(self, reason: str) -> None:
        if self._backoff.failures >= _RELIST_AFTER_FAILURES:
            await self.resync(reason=f"{reason}_limit")
            self._backoff.reset()
            return
        delay = self._backoff.next_delay()
        self._log.debug("watcher_backoff", reason=reason, delay_s=delay)
        await asyncio.sleep(delay)


def _object_key(obj: dict[str, Any]) -> ObjectKey | None:
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        return None
    name = metadata.get("name")
    namespace = metadata.get("namespace")
    if not name or not namespace:
        return None
    return ObjectKey(str(namespace), str(name))
