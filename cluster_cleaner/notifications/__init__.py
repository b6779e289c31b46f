"""Deletion notifications: Kubernetes Events and optional Slack."""

from __future__ import annotations

import os
from typing import Any

from cluster_cleaner.models.config import NotificationConfig
from cluster_cleaner.notifications.events import KubernetesEventChannel
from cluster_cleaner.notifications.manager import NotificationChannel, NotificationDispatcher
from cluster_cleaner.notifications.slack import SlackNotificationChannel
from cluster_cleaner.observability.logging import get_logger

_log = get_logger("notifications")

__all__ = [
    "KubernetesEventChannel",
    "NotificationChannel",
    "NotificationDispatcher",
    "SlackNotificationChannel",
    "build_notification_dispatcher",
]


def build_notification_dispatcher(config: NotificationConfig, core_api: Any | None = None) -> NotificationDispatcher:
    """Build a dispatcher from configuration.

    The Kubernetes Event channel is registered whenever a ``CoreV1Api`` is
    given. Slack is registered when ``slack_secret_ref`` names an env var
    holding a non-empty webhook URL.
    """
    dispatcher = NotificationDispatcher()
    if core_api is not None:
        dispatcher.add_channel(KubernetesEventChannel(core_api))

    if config.slack_secret_ref:
        webhook_url = os.environ.get(config.slack_secret_ref, "")
        if webhook_url:
            dispatcher.add_channel(SlackNotificationChannel(webhook_url))
        else:
            _log.warning("slack_webhook_missing", secret_ref=config.slack_secret_ref)
    return dispatcher
