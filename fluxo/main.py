"""
Reminder service entry point.
"""

import logging
import os
import threading
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from fluxo.config import AppConfig
from fluxo.database.connection import Database
from fluxo.errors import FluxoError
from fluxo.notifiers.base import LogNotifier, Notifier, NotifierFactory
from fluxo.scheduler import NotificationScheduler
from fluxo.session import AuthService, Session
from fluxo.store import RecordStore

logger = logging.getLogger(__name__)


class FluxoService:
    """Runs activity reminders against one database."""

    def __init__(self, config: AppConfig, db: Database, dry_run: bool = False):
        """
        Initialize the service.

        Args:
            config: Application configuration
            db: Initialized database
            dry_run: Persist in-app notifications but skip platform alerts
        """
        self.config = config
        self.db = db
        self.store = RecordStore(db, notification_limit=config.notifications.retention_limit)
        self.store.seed_defaults()
        self.notifier = None if dry_run else self._build_notifier()
        self.auth = AuthService(
            self.store,
            scheduler_factory=self.create_scheduler,
            default_alert_minutes=config.notifications.default_alert_minutes,
        )
        if config.advanced.admin_password:
            self.auth.ensure_admin(config.advanced.admin_email, config.advanced.admin_password)

    def _build_notifier(self) -> Notifier:
        discord = self.config.notifications.discord
        if discord.webhook_url:
            return NotifierFactory.create(
                {
                    "type": "discord",
                    "webhook_url": discord.webhook_url,
                    "mention_users": discord.mention_users,
                }
            )
        return LogNotifier()

    def create_scheduler(self, store: RecordStore) -> NotificationScheduler:
        return NotificationScheduler(
            store,
            notifier=self.notifier,
            interval_seconds=self.config.scheduler.interval_seconds,
        )

    def run_check(self, now: Optional[datetime] = None) -> int:
        """
        Scan every active user once.

        Returns:
            Number of reminders sent
        """
        scheduler = self.create_scheduler(self.store)
        total = 0
        for user in self.store.users.list_all():
            if not user.is_active:
                continue
            try:
                total += len(scheduler.scan(user.id, now=now))
            except FluxoError as e:
                logger.error(f"Error checking user {user.id}: {e}")
        return total

    def run_session(self, email: str, password: str, stop: threading.Event) -> Session:
        """Sign in and keep the session's reminders running until ``stop`` is set."""
        session = self.auth.sign_in(email, password)
        try:
            stop.wait()
        finally:
            self.auth.sign_out(session)
        return session


def main():
    """CLI entry point."""
    import argparse

    from fluxo.config import load_config

    parser = argparse.ArgumentParser(description="Fluxo Activity Reminder Service")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--dry-run", action="store_true", help="Run without sending platform alerts"
    )
    parser.add_argument(
        "--once", action="store_true", help="Scan every user once and exit"
    )
    parser.add_argument("--email", help="Account whose session keeps reminders running")

    args = parser.parse_args()

    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else getattr(logging, config.advanced.log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db = Database(config.database.path)
    db.initialize()

    service = FluxoService(config, db, dry_run=args.dry_run)

    if args.dry_run:
        logger.info("Dry run mode - no platform alerts will be sent")

    try:
        if args.once or not config.scheduler.enabled:
            sent = service.run_check()
            logger.info(f"Sent {sent} reminder(s)")
        elif args.email:
            password = os.environ.get("FLUXO_PASSWORD", "")
            stop = threading.Event()
            try:
                service.run_session(args.email, password, stop)
            except KeyboardInterrupt:
                stop.set()
        else:
            parser.error("--email is required unless --once is given")
    finally:
        db.close()


if __name__ == "__main__":
    main()
