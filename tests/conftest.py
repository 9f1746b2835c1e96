"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime

from fluxo.config import AssistantConfig
from fluxo.database.connection import Database
from fluxo.database.models import Contact, PlanType, User, UserRole, UserSettings
from fluxo.store import RecordStore


@pytest.fixture
def db():
    """Initialized in-memory database."""
    database = Database(":memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def store(db: Database) -> RecordStore:
    """Record store with the default plans seeded."""
    record_store = RecordStore(db)
    record_store.seed_defaults()
    return record_store


@pytest.fixture
def make_user(store: RecordStore):
    """Factory saving a user with reminders enabled."""

    def _make(
        plan: PlanType = PlanType.BASIC,
        role: UserRole = UserRole.USER,
        email: str = "ana@example.com",
        name: str = "Ana",
    ) -> User:
        user = store.save_user(User(name=name, email=email, role=role, plan=plan))
        store.save_settings(
            UserSettings(user_id=user.id, notifications_enabled=True, activity_alert_minutes=15)
        )
        return user

    return _make


@pytest.fixture
def user(make_user) -> User:
    """BASIC plan user with reminders enabled."""
    return make_user()


@pytest.fixture
def expert_user(make_user) -> User:
    return make_user(plan=PlanType.EXPERT, email="bia@example.com", name="Bia")


@pytest.fixture
def contact(store: RecordStore, user: User) -> Contact:
    return store.save_contact(
        Contact(user_id=user.id, name="Carlos Souza", company="Padaria Sol", phone="11999990000")
    )


@pytest.fixture
def now() -> datetime:
    """Fixed clock reading used by time-dependent tests."""
    return datetime(2024, 5, 20, 9, 0, 0)


@pytest.fixture
def assistant_config() -> AssistantConfig:
    return AssistantConfig(api_key="test-key")


@pytest.fixture
def sample_discord_webhook_url():
    """Sample Discord webhook URL for testing."""
    return "https://discord.com/api/webhooks/123456789/abcdefghijklmnop"
