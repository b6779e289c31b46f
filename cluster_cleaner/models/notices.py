"""Notification payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

MARKED_FOR_DELETION_REASON = "ClusterMarkedForDeletion"


@dataclass(frozen=True)
class DeletionNotice:
    """Human-readable warning that a cluster is about to be removed."""

    namespace: str
    cluster_name: str
    minutes_remaining: int
    uid: str = ""
    reason: str = MARKED_FOR_DELETION_REASON
    emitted_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def message(self) -> str:
        minutes = max(0, self.minutes_remaining)
        return f"Cluster {self.namespace}/{self.cluster_name} will be deleted in aprox. {minutes} min."
