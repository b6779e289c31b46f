"""Slack notification channel for cluster-cleaner.

Posts DeletionNotice messages to a Slack incoming webhook using Block Kit.
"""

from __future__ import annotations

import structlog

from cluster_cleaner.models.notices import DeletionNotice
from cluster_cleaner.notifications.manager import NotificationChannel

_log = structlog.get_logger(component="notifications.slack")

_WARNING_COLOR = "#ffae42"


class SlackNotificationChannel(NotificationChannel):
    """Delivers deletion warnings to a Slack channel via an incoming webhook.

    Args:
        webhook_url: Slack incoming webhook URL
                     (e.g. ``https://hooks.slack.com/services/…``).
        timeout: HTTP request timeout in seconds. Defaults to 10.
    """

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        if not webhook_url:
            raise ValueError("Slack webhook_url must not be empty")
        self._webhook_url = webhook_url
        self._timeout = timeout

    @property
    def channel_name(self) -> str:
        return "slack"

    async def send(self, notice: DeletionNotice) -> bool:
        """Post *notice* to Slack. Returns True on HTTP 200 OK, False otherwise."""
        import httpx

        payload = self._build_payload(notice)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._webhook_url, json=payload)
                if response.status_code == 200:
                    return True
                _log.warning(
                    "slack_unexpected_status",
                    status_code=response.status_code,
                    body=response.text[:200],
                    cluster=notice.cluster_name,
                )
                return False
        except httpx.TimeoutException:
            _log.warning("slack_request_timeout", cluster=notice.cluster_name)
            return False
        except httpx.HTTPError as exc:
            _log.warning("slack_http_error", error=str(exc), cluster=notice.cluster_name)
            return False

    def _build_payload(self, notice: DeletionNotice) -> dict[object, object]:
        """Construct a Slack Block Kit message payload."""
        cluster_info = (
            f"*Cluster:* `{notice.namespace}/{notice.cluster_name}`\n"
            f"*Reason:* {notice.reason}\n"
            f"*Minutes remaining:* {max(0, notice.minutes_remaining)}"
        )
        emitted_at = notice.emitted_at.strftime("%Y-%m-%d %H:%M:%S UTC")

        return {
            "attachments": [
                {
                    "color": _WARNING_COLOR,
                    "blocks": [
                        {
                            "type": "header",
                            "text": {
                                "type": "plain_text",
                                "text": ":hourglass: Cluster scheduled for deletion",
                                "emoji": True,
                            },
                        },
                        {
                            "type": "section",
                            "text": {"type": "mrkdwn", "text": cluster_info},
                        },
                        {
                            "type": "section",
                            "text": {"type": "mrkdwn", "text": notice.message},
                        },
                        {
                            "type": "context",
                            "elements": [{"type": "mrkdwn", "text": f"Sent at: {emitted_at}"}],
                        },
                    ],
                }
            ]
        }
