"""
Repository classes for CRUD operations.

Every save is an upsert keyed by the record id that replaces all columns.
``INSERT OR REPLACE`` is avoided on purpose: it deletes the old row first,
which would fire the ON DELETE rules of dependent tables.
"""

import sqlite3
from datetime import datetime
from typing import Any, Optional

from fluxo.errors import NotFoundError
from .connection import Database
from .models import (
    Activity,
    AppNotification,
    BotConfig,
    BotConnectionStatus,
    Contact,
    Expense,
    NotificationType,
    Opportunity,
    OpportunityStatus,
    PlanConfig,
    PlanFeatures,
    PlanType,
    TransactionType,
    User,
    UserRole,
    UserSettings,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def upsert_row(
    cursor: sqlite3.Cursor,
    table: str,
    key: str,
    values: dict[str, Any],
    owner: Optional[str] = None,
) -> None:
    """
    Insert a row or replace every non-key column of the existing one.

    With ``owner`` set, an existing row is only replaced when it has the
    same owner; a row owned by someone else is never touched.

    Raises:
        NotFoundError: If the key belongs to a row of another owner
    """
    columns = list(values)
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(
        f"{c} = excluded.{c}" for c in columns if c not in (key, owner)
    )
    action = f"DO UPDATE SET {updates}" if updates else "DO NOTHING"
    if owner and updates:
        action += f" WHERE {table}.{owner} = excluded.{owner}"
    cursor.execute(
        f"""
        INSERT INTO {table} ({", ".join(columns)})
        VALUES ({placeholders})
        ON CONFLICT({key}) {action}
        """,
        [values[c] for c in columns],
    )
    if owner and cursor.rowcount == 0:
        raise NotFoundError(f"{table} row not found: {values[key]}")


class UserRepository:
    """CRUD operations for users."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, user: User) -> User:
        """Create or replace a user."""
        with self.db.transaction() as cursor:
            upsert_row(
                cursor,
                "users",
                "id",
                {
                    "id": user.id,
                    "name": user.name,
                    "email": user.email,
                    "role": user.role.value,
                    "plan": user.plan.value,
                    "is_active": 1 if user.is_active else 0,
                    "avatar": user.avatar,
                    "password_hash": user.password_hash,
                },
            )
        return user

    def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email, case-insensitively."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM users WHERE lower(email) = lower(?)", (email,)
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def delete(self, user_id: str) -> None:
        """Delete user and, through foreign keys, everything it owns."""
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM users WHERE id = ?", (user_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"User not found: {user_id}")

    def list_all(self) -> list[User]:
        """List all users."""
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM users ORDER BY name")
            return [self._row_to_user(row) for row in cursor.fetchall()]

    def _row_to_user(self, row) -> User:
        """Convert database row to User."""
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            role=UserRole(row["role"]),
            plan=PlanType(row["plan"]),
            is_active=bool(row["is_active"]),
            avatar=row["avatar"],
            password_hash=row["password_hash"],
        )


class PlanRepository:
    """CRUD operations for plan configurations."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, config: PlanConfig) -> PlanConfig:
        """Create or replace a plan configuration."""
        with self.db.transaction() as cursor:
            upsert_row(cursor, "plan_configs", "type", self._to_values(config))
        return config

    def seed(self, configs: dict[PlanType, PlanConfig]) -> None:
        """Insert plan configurations that are not stored yet."""
        with self.db.transaction() as cursor:
            for config in configs.values():
                values = self._to_values(config)
                cursor.execute(
                    f"""
                    INSERT OR IGNORE INTO plan_configs ({", ".join(values)})
                    VALUES ({", ".join("?" for _ in values)})
                    """,
                    list(values.values()),
                )

    def get(self, plan_type: PlanType) -> Optional[PlanConfig]:
        """Get a plan configuration by type."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM plan_configs WHERE type = ?", (plan_type.value,)
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_plan(row)

    def get_all(self) -> dict[PlanType, PlanConfig]:
        """Get every stored plan configuration keyed by type."""
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM plan_configs ORDER BY price")
            rows = cursor.fetchall()
        plans = {}
        for row in rows:
            config = self._row_to_plan(row)
            plans[config.type] = config
        return plans

    def _to_values(self, config: PlanConfig) -> dict[str, Any]:
        return {
            "type": config.type.value,
            "name": config.name,
            "price": config.price,
            "max_contacts": config.max_contacts,
            "max_opportunities": config.max_opportunities,
            "feature_expenses": 1 if config.features.expenses else 0,
            "feature_ai_assistant": 1 if config.features.ai_assistant else 0,
            "feature_voice_commands": 1 if config.features.voice_commands else 0,
        }

    def _row_to_plan(self, row) -> PlanConfig:
        """Convert database row to PlanConfig."""
        return PlanConfig(
            type=PlanType(row["type"]),
            name=row["name"],
            price=row["price"],
            max_contacts=row["max_contacts"],
            max_opportunities=row["max_opportunities"],
            features=PlanFeatures(
                expenses=bool(row["feature_expenses"]),
                ai_assistant=bool(row["feature_ai_assistant"]),
                voice_commands=bool(row["feature_voice_commands"]),
            ),
        )


class ContactRepository:
    """CRUD operations for contacts."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, contact: Contact) -> Contact:
        """Create or replace a contact."""
        with self.db.transaction() as cursor:
            upsert_row(
                cursor,
                "contacts",
                "id",
                {
                    "id": contact.id,
                    "user_id": contact.user_id,
                    "name": contact.name,
                    "company": contact.company,
                    "email": contact.email,
                    "phone": contact.phone,
                    "address": contact.address,
                    "last_interaction": _iso(contact.last_interaction),
                },
                owner="user_id",
            )
        return contact

    def get(self, user_id: str, contact_id: str) -> Optional[Contact]:
        """Get one of the user's contacts."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM contacts WHERE id = ? AND user_id = ?",
                (contact_id, user_id),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_contact(row)

    def list_for_user(self, user_id: str) -> list[Contact]:
        """List a user's contacts by name."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM contacts WHERE user_id = ? ORDER BY name",
                (user_id,),
            )
            return [self._row_to_contact(row) for row in cursor.fetchall()]

    def count_for_user(self, user_id: str) -> int:
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM contacts WHERE user_id = ?", (user_id,)
            )
            return cursor.fetchone()[0]

    def delete(self, user_id: str, contact_id: str) -> None:
        """Delete a contact; its opportunities go with it."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "DELETE FROM contacts WHERE id = ? AND user_id = ?",
                (contact_id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Contact not found: {contact_id}")

    def _row_to_contact(self, row) -> Contact:
        """Convert database row to Contact."""
        return Contact(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            company=row["company"],
            email=row["email"],
            phone=row["phone"],
            address=row["address"],
            last_interaction=_parse_dt(row["last_interaction"]),
        )


class OpportunityRepository:
    """CRUD operations for opportunities."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, opportunity: Opportunity) -> Opportunity:
        """Create or replace an opportunity."""
        with self.db.transaction() as cursor:
            upsert_row(
                cursor,
                "opportunities",
                "id",
                {
                    "id": opportunity.id,
                    "user_id": opportunity.user_id,
                    "contact_id": opportunity.contact_id,
                    "contact_name": opportunity.contact_name,
                    "product": opportunity.product,
                    "value": opportunity.value,
                    "status": opportunity.status.value,
                    "created_at": _iso(opportunity.created_at),
                },
                owner="user_id",
            )
        return opportunity

    def get(self, user_id: str, opportunity_id: str) -> Optional[Opportunity]:
        """Get one of the user's opportunities."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM opportunities WHERE id = ? AND user_id = ?",
                (opportunity_id, user_id),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_opportunity(row)

    def list_for_user(self, user_id: str) -> list[Opportunity]:
        """List a user's opportunities, newest first."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT * FROM opportunities
                WHERE user_id = ?
                ORDER BY created_at DESC
                """,
                (user_id,),
            )
            return [self._row_to_opportunity(row) for row in cursor.fetchall()]

    def count_for_user(self, user_id: str) -> int:
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM opportunities WHERE user_id = ?", (user_id,)
            )
            return cursor.fetchone()[0]

    def delete(self, user_id: str, opportunity_id: str) -> None:
        """Delete an opportunity; linked activities are unlinked, not deleted."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "DELETE FROM opportunities WHERE id = ? AND user_id = ?",
                (opportunity_id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Opportunity not found: {opportunity_id}")

    def _row_to_opportunity(self, row) -> Opportunity:
        """Convert database row to Opportunity."""
        return Opportunity(
            id=row["id"],
            user_id=row["user_id"],
            contact_id=row["contact_id"],
            contact_name=row["contact_name"],
            product=row["product"],
            value=float(row["value"]),
            status=OpportunityStatus(row["status"]),
            created_at=_parse_dt(row["created_at"]),
        )


class ExpenseRepository:
    """CRUD operations for the income and expense ledger."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, expense: Expense) -> Expense:
        """Create or replace a ledger entry."""
        with self.db.transaction() as cursor:
            upsert_row(
                cursor,
                "expenses",
                "id",
                {
                    "id": expense.id,
                    "user_id": expense.user_id,
                    "description": expense.description,
                    "amount": expense.amount,
                    "category": expense.category,
                    "date": _iso(expense.date),
                    "type": expense.type.value,
                },
                owner="user_id",
            )
        return expense

    def get(self, user_id: str, expense_id: str) -> Optional[Expense]:
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM expenses WHERE id = ? AND user_id = ?",
                (expense_id, user_id),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_expense(row)

    def list_for_user(
        self, user_id: str, type: Optional[TransactionType] = None
    ) -> list[Expense]:
        """List a user's ledger entries, newest first."""
        query = "SELECT * FROM expenses WHERE user_id = ?"
        params: list[Any] = [user_id]
        if type is not None:
            query += " AND type = ?"
            params.append(type.value)
        query += " ORDER BY date DESC"
        with self.db.transaction() as cursor:
            cursor.execute(query, params)
            return [self._row_to_expense(row) for row in cursor.fetchall()]

    def delete(self, user_id: str, expense_id: str) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                "DELETE FROM expenses WHERE id = ? AND user_id = ?",
                (expense_id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Expense not found: {expense_id}")

    def _row_to_expense(self, row) -> Expense:
        """Convert database row to Expense."""
        return Expense(
            id=row["id"],
            user_id=row["user_id"],
            description=row["description"],
            amount=float(row["amount"]),
            category=row["category"],
            date=_parse_dt(row["date"]),
            type=TransactionType(row["type"]),
        )


class ActivityRepository:
    """CRUD operations for activities."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, activity: Activity) -> Activity:
        """Create or replace an activity."""
        with self.db.transaction() as cursor:
            upsert_row(
                cursor,
                "activities",
                "id",
                {
                    "id": activity.id,
                    "user_id": activity.user_id,
                    "opportunity_id": activity.opportunity_id,
                    "title": activity.title,
                    "description": activity.description,
                    "date": _iso(activity.date),
                    "completed": 1 if activity.completed else 0,
                    "notified": 1 if activity.notified else 0,
                },
                owner="user_id",
            )
        return activity

    def get(self, user_id: str, activity_id: str) -> Optional[Activity]:
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM activities WHERE id = ? AND user_id = ?",
                (activity_id, user_id),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_activity(row)

    def list_for_user(self, user_id: str) -> list[Activity]:
        """List a user's activities by scheduled time."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM activities WHERE user_id = ? ORDER BY date",
                (user_id,),
            )
            return [self._row_to_activity(row) for row in cursor.fetchall()]

    def mark_notified(self, activity_id: str) -> None:
        """Flag an activity as alerted; the flag is never cleared."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE activities SET notified = 1 WHERE id = ?", (activity_id,)
            )

    def delete(self, user_id: str, activity_id: str) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                "DELETE FROM activities WHERE id = ? AND user_id = ?",
                (activity_id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Activity not found: {activity_id}")

    def _row_to_activity(self, row) -> Activity:
        """Convert database row to Activity."""
        return Activity(
            id=row["id"],
            user_id=row["user_id"],
            opportunity_id=row["opportunity_id"],
            title=row["title"],
            description=row["description"],
            date=_parse_dt(row["date"]),
            completed=bool(row["completed"]),
            notified=bool(row["notified"]),
        )


class NotificationRepository:
    """In-app notifications with a global retention cap."""

    def __init__(self, db: Database, retention_limit: int = 200):
        self.db = db
        self.retention_limit = retention_limit

    def create(self, notification: AppNotification) -> AppNotification:
        """Store a notification, evicting the oldest ones past the cap."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO notifications
                (id, user_id, title, message, read, timestamp, type)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.id,
                    notification.user_id,
                    notification.title,
                    notification.message,
                    1 if notification.read else 0,
                    _iso(notification.timestamp),
                    notification.type.value,
                ),
            )
            cursor.execute(
                """
                DELETE FROM notifications
                WHERE id IN (
                    SELECT id FROM notifications
                    ORDER BY timestamp DESC, rowid DESC
                    LIMIT -1 OFFSET ?
                )
                """,
                (self.retention_limit,),
            )
        return notification

    def list_for_user(self, user_id: str) -> list[AppNotification]:
        """List a user's notifications, newest first."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT * FROM notifications
                WHERE user_id = ?
                ORDER BY timestamp DESC, rowid DESC
                """,
                (user_id,),
            )
            return [self._row_to_notification(row) for row in cursor.fetchall()]

    def count_all(self) -> int:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT COUNT(*) FROM notifications")
            return cursor.fetchone()[0]

    def mark_read(self, user_id: str, notification_id: str) -> None:
        """Mark one notification as read."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE notifications SET read = 1 WHERE id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Notification not found: {notification_id}")

    def mark_all_read(self, user_id: str) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE notifications SET read = 1 WHERE user_id = ?", (user_id,)
            )

    def _row_to_notification(self, row) -> AppNotification:
        """Convert database row to AppNotification."""
        return AppNotification(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            message=row["message"],
            read=bool(row["read"]),
            timestamp=_parse_dt(row["timestamp"]),
            type=NotificationType(row["type"]),
        )


class SettingsRepository:
    """One settings row per user, defaulted when absent."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, user_id: str) -> UserSettings:
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM user_settings WHERE user_id = ?", (user_id,)
            )
            row = cursor.fetchone()
        if row is None:
            return UserSettings(user_id=user_id)
        return self._row_to_settings(row)

    def save(self, settings: UserSettings) -> UserSettings:
        with self.db.transaction() as cursor:
            upsert_row(
                cursor,
                "user_settings",
                "user_id",
                {
                    "user_id": settings.user_id,
                    "notifications_enabled": 1 if settings.notifications_enabled else 0,
                    "activity_alert_minutes": settings.activity_alert_minutes,
                    "google_api_key": settings.google_api_key,
                },
            )
        return settings

    def _row_to_settings(self, row) -> UserSettings:
        return UserSettings(
            user_id=row["user_id"],
            notifications_enabled=bool(row["notifications_enabled"]),
            activity_alert_minutes=int(row["activity_alert_minutes"]),
            google_api_key=row["google_api_key"],
        )


class BotConfigRepository:
    """One WhatsApp bot profile per user, defaulted when absent."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, user_id: str) -> BotConfig:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM bot_configs WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
        if row is None:
            return BotConfig(user_id=user_id)
        return self._row_to_bot_config(row)

    def save(self, config: BotConfig) -> BotConfig:
        with self.db.transaction() as cursor:
            upsert_row(
                cursor,
                "bot_configs",
                "user_id",
                {
                    "user_id": config.user_id,
                    "whatsapp_number": config.whatsapp_number,
                    "bot_name": config.bot_name,
                    "business_description": config.business_description,
                    "products_and_prices": config.products_and_prices,
                    "operating_hours": config.operating_hours,
                    "communication_tone": config.communication_tone,
                    "system_instructions": config.system_instructions,
                    "is_connected": 1 if config.is_connected else 0,
                    "last_connection": _iso(config.last_connection),
                    "connection_status": config.connection_status.value,
                },
            )
        return config

    def _row_to_bot_config(self, row) -> BotConfig:
        return BotConfig(
            user_id=row["user_id"],
            whatsapp_number=row["whatsapp_number"],
            bot_name=row["bot_name"],
            business_description=row["business_description"],
            products_and_prices=row["products_and_prices"],
            operating_hours=row["operating_hours"],
            communication_tone=row["communication_tone"],
            system_instructions=row["system_instructions"],
            is_connected=bool(row["is_connected"]),
            last_connection=_parse_dt(row["last_connection"]),
            connection_status=BotConnectionStatus(row["connection_status"]),
        )
