"""
Reminder service tests.
"""

import pytest
import threading
from datetime import datetime, timedelta

from fluxo.config import AppConfig, DiscordAlertConfig
from fluxo.database.connection import Database
from fluxo.database.models import Activity
from fluxo.main import FluxoService
from fluxo.notifiers.base import LogNotifier
from fluxo.notifiers.discord import DiscordNotifier


@pytest.fixture
def config() -> AppConfig:
    config = AppConfig()
    config.database.path = ":memory:"
    config.advanced.admin_password = "admin"
    return config


class TestFluxoService:
    """Test service wiring."""

    def test_seeds_plans_and_admin(self, config: AppConfig, db: Database):
        service = FluxoService(config, db)

        assert len(service.store.get_plans()) == 3
        assert service.store.users.get_by_email("admin@fluxo.com").is_admin

    def test_notifier_selection(self, config: AppConfig, db: Database):
        assert isinstance(FluxoService(config, db).notifier, LogNotifier)
        assert FluxoService(config, db, dry_run=True).notifier is None

        config.notifications.discord = DiscordAlertConfig(webhook_url="https://discord.com/api/webhooks/1/x")
        assert isinstance(FluxoService(config, db).notifier, DiscordNotifier)

    def test_run_check_scans_active_users(self, config: AppConfig, db: Database):
        service = FluxoService(config, db, dry_run=True)
        now = datetime(2024, 5, 20, 9, 0)
        active = service.auth.sign_up("Ana", "ana@example.com", "x")
        inactive = service.auth.sign_up("Bia", "bia@example.com", "x")
        inactive.is_active = False
        service.store.save_user(inactive)
        for user in (active, inactive):
            service.store.save_activity(
                Activity(user_id=user.id, title="Ligar", date=now + timedelta(minutes=5))
            )

        assert service.run_check(now=now) == 1

    def test_run_session_signs_out_on_stop(self, config: AppConfig, db: Database):
        service = FluxoService(config, db, dry_run=True)
        service.auth.sign_up("Ana", "ana@example.com", "x")
        stop = threading.Event()
        stop.set()

        session = service.run_session("ana@example.com", "x", stop)

        assert session.active is False
        assert session.scheduler.is_running is False
