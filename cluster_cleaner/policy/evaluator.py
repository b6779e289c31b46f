"""Policy evaluator: one decision per cluster per reconciliation.

Composition order::

    guard decision (ignore)          -> return it
    ttl elapsed                      -> delete   (provider attached)
    warn ttl elapsed                 -> warn     (recheck near the deadline)
    otherwise                        -> wait     (short fixed recheck)
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta

from cluster_cleaner.models.cluster import Action, ClusterResource, Decision
from cluster_cleaner.policy.ownership import OwnershipGuard
from cluster_cleaner.policy.time_policy import TimePolicy
from cluster_cleaner.provider.resolver import ProviderResolver

_MIN_REQUEUE = timedelta(seconds=1)


class PolicyEvaluator:
    """Turns a cluster's age, labels and annotations into a :class:`Decision`.

    Args:
        time_policy: TTL thresholds.
        guard: Ownership and protection rules.
        resolver: Provider resolver, consulted only for ``delete`` decisions.
            May be None for offline evaluation via :meth:`decide`.
        recheck_interval: Requeue delay for ``wait``.
        warn_recheck_interval: Upper bound on the requeue delay for ``warn``.
    """

    def __init__(
        self,
        time_policy: TimePolicy,
        guard: OwnershipGuard,
        resolver: ProviderResolver | None = None,
        recheck_interval: timedelta = timedelta(minutes=5),
        warn_recheck_interval: timedelta = timedelta(hours=1),
    ) -> None:
        self._time = time_policy
        self._guard = guard
        self._resolver = resolver
        self._recheck_interval = recheck_interval
        self._warn_recheck_interval = warn_recheck_interval

    def decide(self, cluster: ClusterResource, now: datetime) -> Decision:
        """Pure decision without provider resolution."""
        guarded = self._guard.check(cluster, now)
        if guarded is not None:
            return guarded

        created = cluster.created_at
        remaining = self._time.minutes_remaining(created, now)

        if self._time.ttl_elapsed(created, now):
            return Decision(Action.DELETE, reason="ttl-elapsed", minutes_remaining=remaining)

        if self._time.warn_elapsed(created, now):
            until_deletion = max(self._time.time_until_deletion(created, now), _MIN_REQUEUE)
            return Decision(
                Action.WARN,
                reason="warn-ttl-elapsed",
                requeue_after=min(self._warn_recheck_interval, until_deletion),
                minutes_remaining=remaining,
            )

        return Decision(
            Action.WAIT,
            reason="ttl-not-reached",
            requeue_after=self._recheck_interval,
            minutes_remaining=remaining,
        )

    async def evaluate(self, cluster: ClusterResource, now: datetime) -> Decision:
        """Decide, and attach the resolved provider to ``delete`` decisions.

        Raises ProviderResolutionError when the provider cannot be determined.
        """
        decision = self.decide(cluster, now)
        if decision.action is not Action.DELETE:
            return decision
        if self._resolver is None:
            raise RuntimeError("PolicyEvaluator.evaluate requires a ProviderResolver")
        provider = await self._resolver.resolve(cluster)
        return dataclasses.replace(decision, provider=provider)
