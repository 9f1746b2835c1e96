"""
Authentication and the per-user session context.

A Session is created on sign-in and closed on sign-out. It carries the
current user, the plan table and the reminder scheduler, and is passed
explicitly to everything that needs them.
"""

import logging
from typing import Callable, Optional

from passlib.hash import pbkdf2_sha256

from fluxo.access import Feature, can_access_feature, can_create, can_navigate, require_feature
from fluxo.database.models import (
    AppNotification,
    Contact,
    Expense,
    Opportunity,
    OpportunityStatus,
    PlanConfig,
    PlanType,
    TransactionType,
    User,
    UserRole,
    UserSettings,
)
from fluxo.errors import NotFoundError, PermissionDeniedError, ValidationError
from fluxo.plans import get_plan_config
from fluxo.scheduler import NotificationScheduler
from fluxo.store import RecordStore

logger = logging.getLogger(__name__)

SchedulerFactory = Callable[[RecordStore], NotificationScheduler]


def hash_password(password: str) -> str:
    """Hash plain password with PBKDF2-SHA256."""
    return pbkdf2_sha256.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return pbkdf2_sha256.verify(password, hashed)
    except ValueError:
        return False


class Session:
    """Signed-in user context."""

    def __init__(
        self,
        store: RecordStore,
        user: User,
        scheduler: Optional[NotificationScheduler] = None,
    ):
        self.store = store
        self.user = user
        self.scheduler = scheduler
        self.plans: dict[PlanType, PlanConfig] = store.get_plans()
        self.active = True

    def _require_open(self) -> None:
        if not self.active:
            raise PermissionDeniedError("Session is closed")

    def _require_admin(self) -> None:
        self._require_open()
        if self.user.role != UserRole.ADMIN:
            raise PermissionDeniedError("Admin access only")

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def plan(self) -> PlanConfig:
        return get_plan_config(self.plans, self.user.plan)

    def refresh(self) -> None:
        """Reload the user and the plan table from storage."""
        self._require_open()
        self.user = self.store.get_user(self.user.id)
        self.plans = self.store.get_plans()

    # Guard helpers

    def can(self, feature) -> bool:
        return self.active and can_access_feature(self.user, feature, self.plans)

    def can_navigate(self, page: str) -> bool:
        return self.active and can_navigate(self.user, page, self.plans)

    def require(self, feature) -> None:
        self._require_open()
        require_feature(self.user, feature, self.plans)

    # Reminders

    def start_reminders(self) -> None:
        if self.scheduler is not None:
            self.scheduler.start(self.user.id)

    def stop_reminders(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()

    def close(self) -> None:
        """Tear the session down; the scheduler never fires afterwards."""
        self.stop_reminders()
        self.active = False

    # Gated creation

    def add_contact(self, contact: Contact) -> Contact:
        """Create a contact if the plan's contact limit allows it."""
        self._require_open()
        contact.user_id = self.user.id
        is_new = self.store.contacts.get(self.user.id, contact.id) is None
        if is_new and not self.user.is_admin:
            count = self.store.contacts.count_for_user(self.user.id)
            if not can_create(count, self.plan.max_contacts):
                raise PermissionDeniedError(
                    f"Contact limit reached for plan {self.plan.name}"
                )
        return self.store.save_contact(contact)

    def add_opportunity(
        self,
        contact_id: str,
        product: str,
        value,
        status: OpportunityStatus = OpportunityStatus.OPEN,
    ) -> Opportunity:
        """Create an opportunity if the plan's limit allows it."""
        self._require_open()
        if not self.user.is_admin:
            count = self.store.opportunities.count_for_user(self.user.id)
            if not can_create(count, self.plan.max_opportunities):
                raise PermissionDeniedError(
                    f"Opportunity limit reached for plan {self.plan.name}"
                )
        contact = self.store.contacts.get(self.user.id, contact_id)
        if contact is None:
            raise NotFoundError(f"Contact not found: {contact_id}")
        return self.store.save_opportunity(
            Opportunity(
                user_id=self.user.id,
                contact_id=contact.id,
                contact_name=contact.name,
                product=product,
                value=value,
                status=status,
            )
        )

    def add_expense(
        self,
        description: str,
        amount,
        type: TransactionType = TransactionType.EXPENSE,
        category: Optional[str] = None,
    ) -> Expense:
        """Record income or expense; requires the expenses feature."""
        self.require(Feature.EXPENSES)
        return self.store.save_expense(
            Expense(
                user_id=self.user.id,
                description=description,
                amount=amount,
                category=category or "",
                type=type,
            )
        )

    # Notifications

    def notifications(self) -> list[AppNotification]:
        """The user's notifications, newest first."""
        self._require_open()
        return self.store.list_notifications(self.user.id)

    def unread_count(self) -> int:
        return sum(1 for n in self.notifications() if not n.read)

    def mark_read(self, notification_id: str) -> None:
        self._require_open()
        self.store.notifications.mark_read(self.user.id, notification_id)

    def mark_all_read(self) -> None:
        self._require_open()
        self.store.notifications.mark_all_read(self.user.id)

    # Settings

    def settings(self) -> UserSettings:
        self._require_open()
        return self.store.get_settings(self.user.id)

    def update_settings(self, **changes) -> UserSettings:
        """Change selected settings fields and persist them."""
        settings = self.settings()
        for name, value in changes.items():
            if not hasattr(settings, name) or name == "user_id":
                raise ValidationError(f"Unknown setting: {name}")
            setattr(settings, name, value)
        return self.store.save_settings(settings)

    def change_plan(self, plan: PlanType) -> User:
        """Self-service plan change."""
        self._require_open()
        self.user.plan = PlanType(plan)
        self.store.save_user(self.user)
        logger.info(f"User {self.user.id} switched to plan {self.user.plan.value}")
        return self.user

    # Administration

    def list_users(self) -> list[User]:
        self._require_admin()
        return self.store.users.list_all()

    def set_user_plan(self, user_id: str, plan: PlanType) -> User:
        self._require_admin()
        user = self.store.get_user(user_id)
        user.plan = PlanType(plan)
        return self.store.save_user(user)

    def set_user_role(self, user_id: str, role: UserRole) -> User:
        self._require_admin()
        user = self.store.get_user(user_id)
        user.role = UserRole(role)
        return self.store.save_user(user)

    def set_user_active(self, user_id: str, active: bool) -> User:
        self._require_admin()
        user = self.store.get_user(user_id)
        user.is_active = active
        return self.store.save_user(user)

    def delete_user(self, user_id: str) -> None:
        self._require_admin()
        if user_id == self.user.id:
            raise ValidationError("Admins cannot delete their own account")
        self.store.delete_user(user_id)

    def save_plan_configs(self, configs: dict[PlanType, PlanConfig]) -> None:
        self._require_admin()
        self.store.save_plan_configs(configs)
        self.plans = self.store.get_plans()


class AuthService:
    """Local email and password authentication."""

    def __init__(
        self,
        store: RecordStore,
        scheduler_factory: Optional[SchedulerFactory] = None,
        default_alert_minutes: int = 15,
    ):
        self.store = store
        self.scheduler_factory = scheduler_factory
        self.default_alert_minutes = default_alert_minutes

    def sign_up(
        self,
        name: str,
        email: str,
        password: str,
        plan: PlanType = PlanType.BASIC,
        role: UserRole = UserRole.USER,
    ) -> User:
        """Create an account with default reminder settings."""
        email = (email or "").strip()
        if not password:
            raise ValidationError("password is required")
        if self.store.users.get_by_email(email) is not None:
            raise ValidationError(f"Email already registered: {email}")

        user = User(
            name=name,
            email=email,
            role=UserRole(role),
            plan=PlanType(plan),
            password_hash=hash_password(password),
        )
        with self.store.db.transaction():
            self.store.save_user(user)
            self.store.save_settings(
                UserSettings(
                    user_id=user.id,
                    notifications_enabled=True,
                    activity_alert_minutes=self.default_alert_minutes,
                )
            )
        logger.info(f"Registered user {user.id} ({user.email})")
        return user

    def pre_register(
        self,
        admin: Session,
        name: str,
        email: str,
        password: str,
        plan: PlanType = PlanType.BASIC,
        role: UserRole = UserRole.USER,
    ) -> User:
        """Admin creates an account on someone's behalf."""
        admin._require_admin()
        return self.sign_up(name, email, password, plan=plan, role=role)

    def ensure_admin(self, email: str, password: str, name: str = "Administrador") -> User:
        """Create the admin account unless the email is already registered."""
        existing = self.store.users.get_by_email(email)
        if existing is not None:
            return existing
        return self.sign_up(name, email, password, plan=PlanType.EXPERT, role=UserRole.ADMIN)

    def sign_in(self, email: str, password: str, start_reminders: bool = True) -> Session:
        """
        Open a session for valid credentials.

        Raises:
            PermissionDeniedError: On wrong credentials or inactive account
        """
        user = self.store.users.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            raise PermissionDeniedError("Invalid email or password")
        if not user.is_active:
            raise PermissionDeniedError("Account is disabled")

        scheduler = self.scheduler_factory(self.store) if self.scheduler_factory else None
        session = Session(self.store, user, scheduler=scheduler)
        if start_reminders:
            session.start_reminders()
        logger.info(f"User {user.id} signed in")
        return session

    def sign_out(self, session: Session) -> None:
        session.close()
        logger.info(f"User {session.user.id} signed out")
