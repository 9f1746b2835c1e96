"""
Base notifier classes for platform-level activity alerts.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Any


@dataclass
class ActivityAlert:
    """Transient reminder that an activity is about to start."""

    user_id: str
    activity_id: str
    title: str
    body: str
    scheduled_for: datetime


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None


class Notifier(ABC):
    """Abstract base class for notifiers."""

    @abstractmethod
    def send(self, alert: ActivityAlert) -> NotificationResult:
        """
        Send a single alert notification.

        Args:
            alert: Alert to send

        Returns:
            NotificationResult indicating success or failure
        """
        pass


class LogNotifier(Notifier):
    """Writes alerts to the log; used when no alert channel is configured."""

    def __init__(self, logger_name: str = "fluxo.alerts"):
        self.logger = logging.getLogger(logger_name)

    def send(self, alert: ActivityAlert) -> NotificationResult:
        self.logger.info(f"{alert.title}: {alert.body}")
        return NotificationResult(success=True, channel="log")


class NotifierFactory:
    """Factory for creating notifier instances."""

    @staticmethod
    def create(config: dict[str, Any]) -> Notifier:
        """
        Create a notifier from configuration.

        Args:
            config: Notifier configuration dict

        Returns:
            Appropriate Notifier instance

        Raises:
            ValueError: If notifier type is unknown
        """
        notifier_type = config.get("type")

        if notifier_type == "discord":
            from .discord import DiscordNotifier

            return DiscordNotifier(
                webhook_url=config.get("webhook_url", ""),
                mention_users=config.get("mention_users", False),
            )

        elif notifier_type == "log":
            return LogNotifier()

        else:
            raise ValueError(f"Unknown notifier type: {notifier_type}")
