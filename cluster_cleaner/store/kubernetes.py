"""ObjectStore backed by kubernetes_asyncio.

Custom resources (Cluster, App) go through ``CustomObjectsApi`` and come
back as plain dicts. Core resources go through ``CoreV1Api`` and are
serialised to the same dict shape so callers never see client models.
"""

from __future__ import annotations

import builtins
from typing import Any

from kubernetes_asyncio.client.exceptions import ApiException

from cluster_cleaner.models.cluster import CONFIG_MAP, ResourceKind
from cluster_cleaner.observability.logging import get_logger
from cluster_cleaner.store.base import BACKGROUND, NotFoundError, StoreError

_log = get_logger("store.kubernetes")


class KubernetesObjectStore:
    """Implements :class:`~cluster_cleaner.store.base.ObjectStore`.

    Args:
        custom_api: A ``CustomObjectsApi`` instance.
        core_api: A ``CoreV1Api`` instance.
    """

    def __init__(self, custom_api: Any, core_api: Any) -> None:
        self._custom = custom_api
        self._core = core_api

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        try:
            if kind.group:
                result = await self._custom.get_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, name
                )
                return dict(result)
            _require_config_map(kind)
            obj = await self._core.read_namespaced_config_map(name, namespace)
            return self._to_dict(obj)
        except ApiException as exc:
            raise _translate(exc, kind, namespace, name, "get") from exc

    async def delete(
        self,
        kind: ResourceKind,
        namespace: str,
        name: str,
        propagation: str = BACKGROUND,
    ) -> None:
        try:
            if kind.group:
                await self._custom.delete_namespaced_custom_object(
                    kind.group,
                    kind.version,
                    namespace,
                    kind.plural,
                    name,
                    propagation_policy=propagation,
                )
                return
            _require_config_map(kind)
            await self._core.delete_namespaced_config_map(name, namespace, propagation_policy=propagation)
        except ApiException as exc:
            raise _translate(exc, kind, namespace, name, "delete") from exc

    async def delete_by_selector(
        self,
        kind: ResourceKind,
        namespace: str,
        label_selector: str,
        propagation: str = BACKGROUND,
    ) -> None:
        try:
            if kind.group:
                await self._custom.delete_collection_namespaced_custom_object(
                    kind.group,
                    kind.version,
                    namespace,
                    kind.plural,
                    label_selector=label_selector,
                    propagation_policy=propagation,
                )
                return
            _require_config_map(kind)
            await self._core.delete_collection_namespaced_config_map(
                namespace,
                label_selector=label_selector,
                propagation_policy=propagation,
            )
        except ApiException as exc:
            # A collection delete has no single object to be missing.
            raise StoreError(
                f"delete {kind.kind} in {namespace} matching {label_selector!r} failed: {exc.reason}",
                status=exc.status,
            ) from exc

    async def list(self, kind: ResourceKind, namespace: str = "") -> tuple[builtins.list[dict[str, Any]], str]:
        """List objects of *kind*; returns ``(items, resourceVersion)``."""
        try:
            if kind.group:
                if namespace:
                    result = await self._custom.list_namespaced_custom_object(
                        kind.group, kind.version, namespace, kind.plural
                    )
                else:
                    result = await self._custom.list_cluster_custom_object(kind.group, kind.version, kind.plural)
            else:
                _require_config_map(kind)
                if namespace:
                    obj = await self._core.list_namespaced_config_map(namespace)
                else:
                    obj = await self._core.list_config_map_for_all_namespaces()
                result = self._to_dict(obj)
        except ApiException as exc:
            raise StoreError(f"list {kind.kind} failed: {exc.reason}", status=exc.status) from exc

        items = [dict(item) for item in result.get("items") or []]
        resource_version = str((result.get("metadata") or {}).get("resourceVersion", ""))
        return items, resource_version

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        serialised = self._core.api_client.sanitize_for_serialization(obj)
        return serialised if isinstance(serialised, dict) else {}


def _require_config_map(kind: ResourceKind) -> None:
    if kind != CONFIG_MAP:
        raise ValueError(f"Unsupported core resource kind: {kind.kind}")


def _translate(exc: ApiException, kind: ResourceKind, namespace: str, name: str, verb: str) -> StoreError:
    if exc.status == 404:
        return NotFoundError(kind, namespace, name)
    _log.debug("store_call_failed", verb=verb, kind=kind.kind, namespace=namespace, name=name, status=exc.status)
    return StoreError(f"{verb} {kind.kind} {namespace}/{name} failed: {exc.reason}", status=exc.status)
