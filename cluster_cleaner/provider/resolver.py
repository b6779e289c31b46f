"""Resolve which provisioning path produced a cluster.

The provider kind is installation-wide configuration. It comes either from
an explicit override or from a YAML document stored in a ConfigMap, e.g.::

    apiVersion: v1
    kind: ConfigMap
    metadata:
      name: cluster-cleaner
      namespace: giantswarm
    data:
      values: |
        provider:
          kind: capa

Without a provider no safe deletion strategy exists, so every failure to
read or parse it raises :class:`ProviderResolutionError`.
"""

from __future__ import annotations

from typing import Any

import yaml

from cluster_cleaner.models.cluster import CONFIG_MAP, ApplicationManaged, ClusterResource, Provider, Vintage
from cluster_cleaner.models.config import MarkerConfig, ProviderConfig
from cluster_cleaner.observability.logging import get_logger
from cluster_cleaner.store.base import NotFoundError, ObjectStore, StoreError

_log = get_logger("provider_resolver")


class ProviderResolutionError(Exception):
    """The installation's provider kind could not be determined."""


class ProviderResolver:
    """Produces a :data:`Provider` variant for a cluster."""

    def __init__(self, config: ProviderConfig, markers: MarkerConfig, store: ObjectStore) -> None:
        self._config = config
        self._markers = markers
        self._store = store

    async def installation_kind(self) -> str:
        """Return the lower-cased provider kind of this installation."""
        if self._config.kind:
            return self._config.kind.lower()

        ns, name = self._config.configmap_namespace, self._config.configmap_name
        try:
            configmap = await self._store.get(CONFIG_MAP, ns, name)
        except NotFoundError as exc:
            raise ProviderResolutionError(f"provider ConfigMap {ns}/{name} not found") from exc
        except StoreError as exc:
            raise ProviderResolutionError(f"reading provider ConfigMap {ns}/{name} failed: {exc}") from exc

        raw = (configmap.get("data") or {}).get(self._config.configmap_key)
        if not raw:
            raise ProviderResolutionError(f"provider ConfigMap {ns}/{name} has no key {self._config.configmap_key!r}")
        kind = _kind_from_values(raw)
        _log.debug("provider_kind_resolved", kind=kind, configmap=f"{ns}/{name}")
        return kind

    async def resolve(self, cluster: ClusterResource) -> Provider:
        kind = await self.installation_kind()
        if kind in self._config.vintage_kinds:
            return Vintage(kind)
        if self._markers.release_version_label in cluster.labels:
            return Vintage(kind)
        return ApplicationManaged(kind)


def _kind_from_values(raw: str) -> str:
    """Extract ``provider.kind`` (or a scalar ``provider``) from YAML values."""
    try:
        values: Any = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ProviderResolutionError(f"provider values are not valid YAML: {exc}") from exc

    if not isinstance(values, dict):
        raise ProviderResolutionError("provider values must be a mapping")

    provider = values.get("provider")
    if isinstance(provider, dict):
        provider = provider.get("kind")
    if not isinstance(provider, str) or not provider.strip():
        raise ProviderResolutionError("provider values contain no provider kind")
    return provider.strip().lower()
