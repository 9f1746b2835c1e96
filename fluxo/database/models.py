"""
Data models for Fluxo CRM.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


def new_id() -> str:
    """Generate a new record identifier."""
    return uuid.uuid4().hex


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class PlanType(str, Enum):
    BASIC = "BASIC"
    ADVANCED = "ADVANCED"
    EXPERT = "EXPERT"


class OpportunityStatus(str, Enum):
    """Pipeline stage of an opportunity."""

    OPEN = "OPEN"
    NEGOTIATION = "NEGOTIATION"
    WON = "WON"
    LOST = "LOST"

    @property
    def label(self) -> str:
        """Display label used in notifications."""
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    OpportunityStatus.OPEN: "Aberta",
    OpportunityStatus.NEGOTIATION: "Em Negociação",
    OpportunityStatus.WON: "Fechada (Ganho)",
    OpportunityStatus.LOST: "Perdida",
}


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class NotificationType(str, Enum):
    ACTIVITY = "ACTIVITY"
    SYSTEM = "SYSTEM"
    OPPORTUNITY = "OPPORTUNITY"


class BotConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class PlanFeatures:
    """Optional features unlocked by a plan."""

    expenses: bool = False
    ai_assistant: bool = False
    voice_commands: bool = False


@dataclass
class PlanConfig:
    """Limits and features of a plan tier. -1 means unlimited."""

    type: PlanType
    name: str
    price: float
    max_contacts: int
    max_opportunities: int
    features: PlanFeatures = field(default_factory=PlanFeatures)


@dataclass
class User:
    """Account with a role and a plan."""

    name: str
    email: str
    role: UserRole = UserRole.USER
    plan: PlanType = PlanType.BASIC
    is_active: bool = True
    avatar: Optional[str] = None
    password_hash: Optional[str] = None
    id: str = field(default_factory=new_id)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass
class Contact:
    """Customer or prospect owned by a user."""

    user_id: str
    name: str
    company: str = ""
    email: str = ""
    phone: str = ""
    address: Optional[str] = None
    last_interaction: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)


@dataclass
class Opportunity:
    """Sales opportunity linked to a contact.

    ``contact_name`` is copied from the contact when the opportunity is
    created and is not refreshed when the contact is renamed.
    """

    user_id: str
    contact_id: str
    contact_name: str
    product: str
    value: float = 0.0
    status: OpportunityStatus = OpportunityStatus.OPEN
    created_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)


@dataclass
class Expense:
    """Ledger entry; ``type`` tells income from expense."""

    user_id: str
    description: str
    amount: float
    category: str = "Geral"
    date: datetime = field(default_factory=datetime.now)
    type: TransactionType = TransactionType.EXPENSE
    id: str = field(default_factory=new_id)


@dataclass
class Activity:
    """Scheduled task, optionally tied to an opportunity."""

    user_id: str
    title: str
    date: datetime
    description: str = ""
    opportunity_id: Optional[str] = None
    completed: bool = False
    notified: bool = False
    id: str = field(default_factory=new_id)


@dataclass
class AppNotification:
    """In-app notification shown in the bell menu."""

    user_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.SYSTEM
    read: bool = False
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)


@dataclass
class UserSettings:
    """Per-user reminder and API key preferences."""

    user_id: str
    notifications_enabled: bool = False
    activity_alert_minutes: int = 15
    google_api_key: Optional[str] = None


@dataclass
class BotConfig:
    """WhatsApp bot profile for a user's business."""

    user_id: str
    whatsapp_number: str = ""
    bot_name: str = ""
    business_description: Optional[str] = None
    products_and_prices: Optional[str] = None
    operating_hours: Optional[str] = None
    communication_tone: Optional[str] = "Profissional e Educado"
    system_instructions: str = ""
    is_connected: bool = False
    last_connection: Optional[datetime] = None
    connection_status: BotConnectionStatus = BotConnectionStatus.DISCONNECTED
