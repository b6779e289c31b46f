"""Ownership guard: markers that protect a cluster from TTL deletion.

Rules are evaluated in a fixed order and the first match wins:

1. GitOps ownership label - the cluster belongs to a delivery pipeline.
2. Ignore annotation - an operator opted the cluster out explicitly.
3. ``keep-until`` label - protected until the given UTC calendar date.
   An unparseable date fails open: deletion is skipped for this pass only.
4. Deletion already requested - nothing left to do.

No rule performs I/O; the caller supplies ``now``.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from cluster_cleaner.models.cluster import Action, ClusterResource, Decision
from cluster_cleaner.models.config import MarkerConfig


class InvalidKeepUntilError(ValueError):
    """The keep-until label does not match the configured date format."""


class OwnershipGuard:
    """Decides whether a cluster is protected, independent of its age.

    Args:
        markers: Label and annotation keys to look for.
        keep_until_recheck: Requeue delay while a keep-until date is valid.
    """

    def __init__(self, markers: MarkerConfig, keep_until_recheck: timedelta = timedelta(hours=24)) -> None:
        self._markers = markers
        self._keep_until_recheck = keep_until_recheck

    def is_gitops_managed(self, labels: dict[str, str]) -> bool:
        return self._markers.gitops_label in labels

    def is_ignore_marked(self, annotations: dict[str, str]) -> bool:
        return self._markers.ignore_annotation in annotations

    def parse_keep_until(self, labels: dict[str, str]) -> date | None:
        """Return the keep-until date, or None when the label is absent.

        Raises InvalidKeepUntilError when the label is present but malformed.
        """
        raw = labels.get(self._markers.keep_until_label)
        if raw is None:
            return None
        try:
            return datetime.strptime(raw, self._markers.keep_until_format).date()
        except ValueError as exc:
            raise InvalidKeepUntilError(
                f"label {self._markers.keep_until_label}={raw!r} does not match {self._markers.keep_until_format!r}"
            ) from exc

    @staticmethod
    def already_terminating(cluster: ClusterResource) -> bool:
        return cluster.deletion_requested_at is not None

    def check(self, cluster: ClusterResource, now: datetime) -> Decision | None:
        """Return an ``ignore`` decision if any rule matches, else None."""
        if self.is_gitops_managed(cluster.labels):
            return Decision(Action.IGNORE, reason="gitops-managed")

        if self.is_ignore_marked(cluster.annotations):
            return Decision(Action.IGNORE, reason="ignore-annotation")

        try:
            keep_until = self.parse_keep_until(cluster.labels)
        except InvalidKeepUntilError as exc:
            return Decision(Action.IGNORE, reason=f"invalid-keep-until: {exc}", misconfigured=True)

        # Date-only comparison: protection ends at the start of the named day (UTC).
        if keep_until is not None and keep_until > now.date():
            return Decision(
                Action.IGNORE,
                reason=f"keep-until {keep_until.isoformat()}",
                requeue_after=self._keep_until_recheck,
            )

        if self.already_terminating(cluster):
            return Decision(Action.IGNORE, reason="deletion-in-progress")

        return None
