"""Cluster, resource identity and decision data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, NamedTuple


class ObjectKey(NamedTuple):
    """Namespace-qualified identity of an API object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ResourceKind:
    """API coordinates of a resource type. Core group is the empty string."""

    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


CLUSTER = ResourceKind("cluster.x-k8s.io", "v1beta1", "clusters", "Cluster")
APP = ResourceKind("application.giantswarm.io", "v1alpha1", "apps", "App")
CONFIG_MAP = ResourceKind("", "v1", "configmaps", "ConfigMap")


class Action(StrEnum):
    """Per-pass decision for a cluster. Mutually exclusive."""

    IGNORE = "ignore"
    WAIT = "wait"
    WARN = "warn"
    DELETE = "delete"


class Outcome(StrEnum):
    """Terminal outcome categories recorded to the metrics sink."""

    IGNORED = "ignored"
    PENDING = "pending"
    ERROR = "error"
    SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class Vintage:
    """Legacy provisioning: the Cluster is the only deletable unit."""

    kind: str


@dataclass(frozen=True)
class ApplicationManaged:
    """Chart based provisioning: the Cluster is rendered from App resources."""

    kind: str


Provider = Vintage | ApplicationManaged


@dataclass(frozen=True)
class Decision:
    """Result of one policy evaluation.

    Never persisted; recomputed on every reconciliation from the cluster's
    current labels, annotations and age.
    """

    action: Action
    reason: str
    requeue_after: timedelta | None = None
    minutes_remaining: int = 0
    misconfigured: bool = False
    provider: Provider | None = None


@dataclass(frozen=True)
class ReconcileResult:
    """What the dispatcher needs back: done, or try again after a delay."""

    requeue_after: timedelta | None = None


@dataclass(frozen=True)
class ClusterResource:
    """Read-only view of a Cluster API ``Cluster`` object."""

    namespace: str
    name: str
    created_at: datetime
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    deletion_requested_at: datetime | None = None
    resource_version: str = ""

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> ClusterResource:
        """Build from a raw API object (as returned by the custom objects API)."""
        metadata = obj.get("metadata") or {}
        created = _parse_timestamp(metadata.get("creationTimestamp"))
        if created is None:
            raise ValueError(f"Cluster {metadata.get('namespace')}/{metadata.get('name')} has no creationTimestamp")
        return cls(
            namespace=str(metadata.get("namespace", "")),
            name=str(metadata.get("name", "")),
            created_at=created,
            uid=str(metadata.get("uid", "")),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            deletion_requested_at=_parse_timestamp(metadata.get("deletionTimestamp")),
            resource_version=str(metadata.get("resourceVersion", "")),
        )


def _parse_timestamp(value: object) -> datetime | None:
    """Parse an RFC 3339 API timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
