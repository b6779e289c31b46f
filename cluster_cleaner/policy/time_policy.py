"""Pure TTL arithmetic. ``now`` is always passed in, never read from a clock."""

from __future__ import annotations

from datetime import datetime, timedelta


class TimePolicy:
    """Maps a creation time to TTL and warning-TTL thresholds.

    Args:
        ttl: Age at which a cluster becomes eligible for deletion.
        warn_ttl: Age at which a deletion warning is due. Must be below ``ttl``.
    """

    def __init__(self, ttl: timedelta, warn_ttl: timedelta) -> None:
        if ttl <= timedelta(0):
            raise ValueError(f"ttl must be positive, got {ttl}")
        if warn_ttl >= ttl:
            raise ValueError(f"warn_ttl ({warn_ttl}) must be shorter than ttl ({ttl})")
        self.ttl = ttl
        self.warn_ttl = warn_ttl

    def ttl_elapsed(self, created_at: datetime, now: datetime) -> bool:
        return now >= created_at + self.ttl

    def warn_elapsed(self, created_at: datetime, now: datetime) -> bool:
        return now >= created_at + self.warn_ttl

    def minutes_remaining(self, created_at: datetime, now: datetime) -> int:
        """Whole TTL minutes minus whole elapsed minutes.

        Negative once the TTL has passed; callers clamp before displaying.
        """
        ttl_minutes = int(self.ttl.total_seconds() / 60)
        elapsed_minutes = int((now - created_at).total_seconds() / 60)
        return ttl_minutes - elapsed_minutes

    def time_until_deletion(self, created_at: datetime, now: datetime) -> timedelta:
        return created_at + self.ttl - now
