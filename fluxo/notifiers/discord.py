"""
Discord webhook notifier.
"""

import time
from typing import Any

import requests

from .base import ActivityAlert, Notifier, NotificationResult


class DiscordNotifier(Notifier):
    """Sends activity reminders via Discord webhook."""

    COLOR_REMINDER = 0x4F46E5  # Indigo

    def __init__(self, webhook_url: str, mention_users: bool = False):
        """
        Initialize Discord notifier.

        Args:
            webhook_url: Discord webhook URL
            mention_users: Whether to @here on every reminder
        """
        self.webhook_url = webhook_url
        self.mention_users = mention_users

    def send(self, alert: ActivityAlert) -> NotificationResult:
        """Send alert to Discord."""
        try:
            payload = self._create_payload(alert)
            response = self._send_webhook(payload)

            if response.ok:
                return NotificationResult(success=True, channel="discord")
            else:
                return NotificationResult(
                    success=False,
                    channel="discord",
                    error=f"HTTP {response.status_code}: {response.text}",
                )

        except requests.exceptions.ConnectionError as e:
            return NotificationResult(
                success=False,
                channel="discord",
                error=f"Connection error: {str(e)}",
            )
        except requests.exceptions.RequestException as e:
            return NotificationResult(
                success=False,
                channel="discord",
                error=str(e),
            )

    def _send_webhook(self, payload: dict[str, Any]) -> requests.Response:
        """Send webhook with rate limit handling."""
        response = requests.post(
            self.webhook_url,
            json=payload,
            timeout=10,
        )

        # Handle rate limiting
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "1")
            time.sleep(float(retry_after))
            response = requests.post(
                self.webhook_url,
                json=payload,
                timeout=10,
            )

        return response

    def _create_payload(self, alert: ActivityAlert) -> dict[str, Any]:
        """Create Discord webhook payload."""
        payload: dict[str, Any] = {
            "embeds": [self._create_embed(alert)],
        }

        if self.mention_users:
            payload["content"] = "@here"

        return payload

    def _create_embed(self, alert: ActivityAlert) -> dict[str, Any]:
        """Create Discord embed for alert."""
        return {
            "title": f"⏰ {alert.title}",
            "description": alert.body,
            "color": self.COLOR_REMINDER,
            "fields": [
                {
                    "name": "Horário",
                    "value": alert.scheduled_for.strftime("%d/%m/%Y %H:%M"),
                    "inline": True,
                },
            ],
            "timestamp": alert.scheduled_for.isoformat(),
        }
