"""
Record store: per-user CRUD plus the cascade, derived-write and retention
rules that span more than one table.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from fluxo.database.connection import TABLES, Database
from fluxo.database.models import (
    Activity,
    AppNotification,
    BotConfig,
    Contact,
    Expense,
    NotificationType,
    Opportunity,
    OpportunityStatus,
    PlanConfig,
    PlanType,
    TransactionType,
    User,
    UserSettings,
)
from fluxo.database.repository import (
    ActivityRepository,
    BotConfigRepository,
    ContactRepository,
    ExpenseRepository,
    NotificationRepository,
    OpportunityRepository,
    PlanRepository,
    SettingsRepository,
    UserRepository,
    upsert_row,
)
from fluxo.errors import NotFoundError, ValidationError
from fluxo.plans import default_plans, validate_plan_config

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1

WON_INCOME_CATEGORY = "Vendas"

# Upsert key per table for import in upsert mode.
_TABLE_KEYS = {
    "plan_configs": "type",
    "user_settings": "user_id",
    "bot_configs": "user_id",
}


def coerce_amount(value: Any, label: str = "amount") -> float:
    """
    Convert user or model input into a non-negative number.

    Raises:
        ValidationError: If the value is not numeric or is negative
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label} must be a number")
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number, got {value!r}")
    if not math.isfinite(number):
        raise ValidationError(f"{label} must be a finite number")
    if number < 0:
        raise ValidationError(f"{label} must not be negative")
    return number


def _require_text(value: Optional[str], label: str) -> None:
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} is required")


@dataclass
class DashboardSummary:
    """Figures shown on a user's dashboard."""

    won_total: float = 0.0
    pipeline_total: float = 0.0
    income_total: float = 0.0
    expense_total: float = 0.0
    status_counts: dict[OpportunityStatus, int] = field(default_factory=dict)
    upcoming_activities: list[Activity] = field(default_factory=list)

    @property
    def balance(self) -> float:
        return self.income_total - self.expense_total


class RecordStore:
    """Facade over the repositories that enforces cross-table rules."""

    def __init__(self, db: Database, notification_limit: int = 200):
        self.db = db
        self.users = UserRepository(db)
        self.plans = PlanRepository(db)
        self.contacts = ContactRepository(db)
        self.opportunities = OpportunityRepository(db)
        self.expenses = ExpenseRepository(db)
        self.activities = ActivityRepository(db)
        self.notifications = NotificationRepository(db, notification_limit)
        self.settings = SettingsRepository(db)
        self.bot_configs = BotConfigRepository(db)

    # Plans

    def seed_defaults(self) -> None:
        """Store the default plan configurations if missing."""
        self.plans.seed(default_plans())

    def get_plans(self) -> dict[PlanType, PlanConfig]:
        """Stored plan configurations, topped up with the defaults."""
        plans = default_plans()
        plans.update(self.plans.get_all())
        return plans

    def save_plan_configs(self, configs: dict[PlanType, PlanConfig]) -> None:
        """Validate and store every given plan configuration at once."""
        for config in configs.values():
            validate_plan_config(config)
        with self.db.transaction():
            for config in configs.values():
                self.plans.save(config)

    # Users

    def save_user(self, user: User) -> User:
        _require_text(user.name, "name")
        _require_text(user.email, "email")
        return self.users.save(user)

    def get_user(self, user_id: str) -> User:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    def delete_user(self, user_id: str) -> None:
        """Delete a user and every record it owns in one transaction."""
        self.users.delete(user_id)
        logger.info(f"Deleted user {user_id} and owned records")

    # Contacts

    def save_contact(self, contact: Contact) -> Contact:
        _require_text(contact.name, "name")
        return self.contacts.save(contact)

    def delete_contact(self, user_id: str, contact_id: str) -> None:
        """Delete a contact together with its opportunities."""
        self.contacts.delete(user_id, contact_id)

    # Opportunities

    def save_opportunity(self, opportunity: Opportunity) -> Opportunity:
        """
        Upsert an opportunity and apply status side effects.

        Entering WON records one INCOME entry for the opportunity value.
        Any status change on an existing opportunity notifies its owner.

        Raises:
            NotFoundError: If the contact or the opportunity id belongs to
                another user
            ValidationError: If status, value or product is invalid
        """
        try:
            opportunity.status = OpportunityStatus(opportunity.status)
        except ValueError:
            raise ValidationError(f"Unknown opportunity status: {opportunity.status}")
        opportunity.value = coerce_amount(opportunity.value, "value")
        _require_text(opportunity.product, "product")

        with self.db.transaction():
            contact = self.contacts.get(opportunity.user_id, opportunity.contact_id)
            if contact is None:
                raise NotFoundError(f"Contact not found: {opportunity.contact_id}")

            previous = self.opportunities.get(opportunity.user_id, opportunity.id)
            self.opportunities.save(opportunity)

            previous_status = previous.status if previous else None
            if previous is not None and previous_status != opportunity.status:
                self._notify_status_change(opportunity, previous_status)

            if (
                opportunity.status == OpportunityStatus.WON
                and previous_status != OpportunityStatus.WON
            ):
                self._record_won_income(opportunity)

        return opportunity

    def update_opportunity_status(
        self, user_id: str, opportunity_id: str, status: OpportunityStatus
    ) -> Opportunity:
        opportunity = self.opportunities.get(user_id, opportunity_id)
        if opportunity is None:
            raise NotFoundError(f"Opportunity not found: {opportunity_id}")
        opportunity.status = OpportunityStatus(status)
        return self.save_opportunity(opportunity)

    def delete_opportunity(self, user_id: str, opportunity_id: str) -> None:
        """Delete an opportunity; linked activities lose the reference only."""
        self.opportunities.delete(user_id, opportunity_id)

    def _record_won_income(self, opportunity: Opportunity) -> Expense:
        income = Expense(
            user_id=opportunity.user_id,
            description=f"Venda: {opportunity.product} - {opportunity.contact_name}",
            amount=opportunity.value,
            category=WON_INCOME_CATEGORY,
            type=TransactionType.INCOME,
        )
        self.expenses.save(income)
        logger.info(
            f"Recorded income {income.amount:.2f} for won opportunity {opportunity.id}"
        )
        return income

    def _notify_status_change(
        self, opportunity: Opportunity, previous: OpportunityStatus
    ) -> None:
        if opportunity.status == OpportunityStatus.WON:
            title = "Venda fechada!"
        elif opportunity.status == OpportunityStatus.LOST:
            title = "Oportunidade perdida"
        else:
            title = "Oportunidade atualizada"
        message = (
            f'"{opportunity.product}" ({opportunity.contact_name}) mudou de '
            f"{previous.label} para {opportunity.status.label}."
        )
        self.create_notification(
            opportunity.user_id, title, message, NotificationType.OPPORTUNITY
        )

    def create_lead(
        self,
        user_id: str,
        name: str,
        interest: str,
        phone: Optional[str] = None,
    ) -> tuple[Contact, Opportunity]:
        """Create a contact and an OPEN zero-value opportunity together."""
        _require_text(name, "name")
        _require_text(interest, "interest")
        with self.db.transaction():
            contact = self.save_contact(
                Contact(user_id=user_id, name=name.strip(), phone=(phone or "").strip())
            )
            opportunity = self.save_opportunity(
                Opportunity(
                    user_id=user_id,
                    contact_id=contact.id,
                    contact_name=contact.name,
                    product=interest.strip(),
                    value=0.0,
                    status=OpportunityStatus.OPEN,
                )
            )
        return contact, opportunity

    # Ledger

    def save_expense(self, expense: Expense) -> Expense:
        expense.amount = coerce_amount(expense.amount)
        _require_text(expense.description, "description")
        if not (expense.category or "").strip():
            expense.category = (
                WON_INCOME_CATEGORY if expense.type == TransactionType.INCOME else "Geral"
            )
        return self.expenses.save(expense)

    def delete_expense(self, user_id: str, expense_id: str) -> None:
        self.expenses.delete(user_id, expense_id)

    # Activities

    def save_activity(self, activity: Activity) -> Activity:
        _require_text(activity.title, "title")
        if not isinstance(activity.date, datetime):
            raise ValidationError("date must be a datetime")
        if activity.opportunity_id is not None:
            if self.opportunities.get(activity.user_id, activity.opportunity_id) is None:
                raise NotFoundError(f"Opportunity not found: {activity.opportunity_id}")
        return self.activities.save(activity)

    def delete_activity(self, user_id: str, activity_id: str) -> None:
        self.activities.delete(user_id, activity_id)

    # Notifications

    def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.SYSTEM,
    ) -> AppNotification:
        return self.notifications.create(
            AppNotification(user_id=user_id, title=title, message=message, type=type)
        )

    def list_notifications(self, user_id: str) -> list[AppNotification]:
        return self.notifications.list_for_user(user_id)

    # Settings

    def get_settings(self, user_id: str) -> UserSettings:
        return self.settings.get(user_id)

    def save_settings(self, settings: UserSettings) -> UserSettings:
        minutes = settings.activity_alert_minutes
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValidationError("activity_alert_minutes must be a positive integer")
        return self.settings.save(settings)

    def get_bot_config(self, user_id: str) -> BotConfig:
        return self.bot_configs.get(user_id)

    def save_bot_config(self, config: BotConfig) -> BotConfig:
        return self.bot_configs.save(config)

    # Reports

    def dashboard_summary(
        self, user_id: str, now: Optional[datetime] = None, upcoming_limit: int = 5
    ) -> DashboardSummary:
        """Aggregate pipeline and ledger figures for one user."""
        now = now or datetime.now()
        summary = DashboardSummary(
            status_counts={status: 0 for status in OpportunityStatus}
        )

        for opp in self.opportunities.list_for_user(user_id):
            summary.status_counts[opp.status] += 1
            if opp.status == OpportunityStatus.WON:
                summary.won_total += opp.value
            elif opp.status in (OpportunityStatus.OPEN, OpportunityStatus.NEGOTIATION):
                summary.pipeline_total += opp.value

        for entry in self.expenses.list_for_user(user_id):
            if entry.type == TransactionType.INCOME:
                summary.income_total += entry.amount
            else:
                summary.expense_total += entry.amount

        upcoming = [
            a
            for a in self.activities.list_for_user(user_id)
            if not a.completed and a.date >= now
        ]
        summary.upcoming_activities = upcoming[:upcoming_limit]
        return summary

    def database_stats(self) -> dict[str, Any]:
        """Row counts per table and the database size in KB."""
        stats: dict[str, Any] = {}
        with self.db.transaction() as cursor:
            for table in TABLES:
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = cursor.fetchone()[0]
            cursor.execute("PRAGMA page_count")
            page_count = cursor.fetchone()[0]
            cursor.execute("PRAGMA page_size")
            page_size = cursor.fetchone()[0]
        stats["size_kb"] = round(page_count * page_size / 1024, 2)
        return stats

    # Backup

    def export_database(self) -> str:
        """Serialize every table into one JSON document."""
        tables: dict[str, list[dict[str, Any]]] = {}
        with self.db.transaction() as cursor:
            for table in TABLES:
                cursor.execute(f"SELECT * FROM {table} ORDER BY rowid")
                tables[table] = [dict(row) for row in cursor.fetchall()]
        document = {
            "version": EXPORT_VERSION,
            "exported_at": datetime.now().isoformat(),
            "tables": tables,
        }
        return json.dumps(document, ensure_ascii=False, indent=2)

    def import_database(self, payload: str, mode: str = "replace") -> dict[str, int]:
        """
        Restore tables from an exported JSON document.

        ``replace`` wipes every table first and is all-or-nothing;
        ``upsert`` merges rows by key.

        Returns:
            Number of imported rows per table

        Raises:
            ValidationError: If the document is malformed
        """
        if mode not in ("replace", "upsert"):
            raise ValidationError(f"Unknown import mode: {mode}")
        try:
            document = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid JSON document: {e}")

        tables = document.get("tables") if isinstance(document, dict) else None
        if not isinstance(tables, dict) or not isinstance(tables.get("users"), list):
            raise ValidationError("Invalid database format: missing users table")

        counts = {}
        with self.db.transaction() as cursor:
            if mode == "replace":
                for table in reversed(TABLES):
                    cursor.execute(f"DELETE FROM {table}")
            for table in TABLES:
                rows = tables.get(table) or []
                if not isinstance(rows, list):
                    raise ValidationError(f"Table {table} must be a list")
                columns = set(self.db.columns(table))
                key = _TABLE_KEYS.get(table, "id")
                for row in rows:
                    if not isinstance(row, dict):
                        raise ValidationError(f"Rows of {table} must be objects")
                    values = {k: v for k, v in row.items() if k in columns}
                    if key not in values:
                        raise ValidationError(f"Row of {table} is missing {key}")
                    upsert_row(cursor, table, key, values)
                counts[table] = len(rows)
            self._check_rows(cursor)
        logger.info(f"Imported database ({mode}): {counts}")
        return counts

    def _check_rows(self, cursor) -> None:
        """Read every stored row back into its model; bad values abort the import."""
        converters = {
            "users": self.users._row_to_user,
            "plan_configs": self.plans._row_to_plan,
            "contacts": self.contacts._row_to_contact,
            "opportunities": self.opportunities._row_to_opportunity,
            "expenses": self.expenses._row_to_expense,
            "activities": self.activities._row_to_activity,
            "notifications": self.notifications._row_to_notification,
            "user_settings": self.settings._row_to_settings,
            "bot_configs": self.bot_configs._row_to_bot_config,
        }
        for table in TABLES:
            cursor.execute(f"SELECT * FROM {table}")
            for row in cursor.fetchall():
                try:
                    converters[table](row)
                except (TypeError, ValueError) as e:
                    raise ValidationError(f"Invalid row in {table}: {e}") from e

    def reset_database(self) -> None:
        """Remove every record and restore the default plans."""
        with self.db.transaction() as cursor:
            for table in reversed(TABLES):
                cursor.execute(f"DELETE FROM {table}")
        self.seed_defaults()
        logger.warning("Database reset to defaults")
