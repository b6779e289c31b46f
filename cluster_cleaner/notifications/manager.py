"""Notification channel interface and fan-out dispatcher."""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog

from cluster_cleaner.models.notices import DeletionNotice
from cluster_cleaner.observability.metrics import notifications_total

_log = structlog.get_logger(component="notifications")


class NotificationChannel(ABC):
    """A destination for :class:`DeletionNotice` messages."""

    @property
    @abstractmethod
    def channel_name(self) -> str: ...

    @abstractmethod
    async def send(self, notice: DeletionNotice) -> bool:
        """Deliver *notice*. Returns True on success."""


class NotificationDispatcher:
    """Sends every notice to all registered channels.

    A failing channel is logged and counted; it never stops delivery to the
    remaining channels and never raises to the caller.
    """

    def __init__(self, channels: list[NotificationChannel] | None = None) -> None:
        self._channels: list[NotificationChannel] = list(channels or [])

    def add_channel(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    async def dispatch(self, notice: DeletionNotice) -> int:
        """Fan *notice* out to all channels; returns the number of successes."""
        delivered = 0
        for channel in self._channels:
            try:
                ok = await channel.send(notice)
            except Exception as exc:
                _log.error(
                    "notification_channel_error",
                    channel=channel.channel_name,
                    cluster=notice.cluster_name,
                    namespace=notice.namespace,
                    error=str(exc),
                )
                ok = False
            notifications_total.labels(channel=channel.channel_name, success=str(ok).lower()).inc()
            if ok:
                delivered += 1
        return delivered
