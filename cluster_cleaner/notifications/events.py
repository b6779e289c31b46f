"""Kubernetes Event notification channel.

Records a ``Normal`` core/v1 Event against the Cluster object, which is what
``kubectl describe cluster`` and event exporters pick up.
"""

from __future__ import annotations

import uuid
from typing import Any

from kubernetes_asyncio.client.exceptions import ApiException

from cluster_cleaner.models.cluster import CLUSTER
from cluster_cleaner.models.notices import DeletionNotice
from cluster_cleaner.notifications.manager import NotificationChannel
from cluster_cleaner.observability.logging import get_logger

_log = get_logger("notifications.events")

_COMPONENT = "cluster-controller"


class KubernetesEventChannel(NotificationChannel):
    """Creates core Events through a ``CoreV1Api`` instance."""

    def __init__(self, core_api: Any, component: str = _COMPONENT) -> None:
        self._core = core_api
        self._component = component

    @property
    def channel_name(self) -> str:
        return "kubernetes_event"

    async def send(self, notice: DeletionNotice) -> bool:
        body = self._build_event(notice)
        try:
            await self._core.create_namespaced_event(notice.namespace, body)
        except ApiException as exc:
            _log.warning(
                "event_create_failed",
                cluster=notice.cluster_name,
                namespace=notice.namespace,
                status=exc.status,
                reason=exc.reason,
            )
            return False
        return True

    def _build_event(self, notice: DeletionNotice) -> dict[str, Any]:
        timestamp = notice.emitted_at.strftime("%Y-%m-%dT%H:%M:%SZ")
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {
                "name": f"{notice.cluster_name}.{uuid.uuid4().hex[:16]}",
                "namespace": notice.namespace,
            },
            "involvedObject": {
                "apiVersion": CLUSTER.api_version,
                "kind": CLUSTER.kind,
                "name": notice.cluster_name,
                "namespace": notice.namespace,
                "uid": notice.uid,
            },
            "reason": notice.reason,
            "message": notice.message,
            "type": "Normal",
            "source": {"component": self._component},
            "firstTimestamp": timestamp,
            "lastTimestamp": timestamp,
            "count": 1,
        }
