"""
Access guard: decides whether a user may use a feature, open a page or
create another record. Predicates never raise; they deny on missing data.
"""

import logging
from enum import Enum
from typing import Optional

from fluxo.database.models import PlanConfig, PlanType, User, UserRole
from fluxo.errors import PermissionDeniedError
from fluxo.plans import get_plan_config, is_unlimited

logger = logging.getLogger(__name__)


class Feature(str, Enum):
    EXPENSES = "expenses"
    AI_ASSISTANT = "aiAssistant"
    VOICE_COMMANDS = "voiceCommands"
    EXPERT_TOOLS = "expertTools"


# Pages every signed-in user may open.
OPEN_PAGES = {"dashboard", "contacts", "opportunities", "activities", "settings"}

PAGE_FEATURES = {
    "expenses": Feature.EXPENSES,
    "image-gen": Feature.EXPERT_TOOLS,
    "whatsapp-bot": Feature.EXPERT_TOOLS,
}

ADMIN_PAGES = {"admin"}


def _plan_has(config: PlanConfig, feature: Feature) -> bool:
    if feature == Feature.EXPENSES:
        return config.features.expenses
    elif feature == Feature.AI_ASSISTANT:
        return config.features.ai_assistant
    elif feature == Feature.VOICE_COMMANDS:
        return config.features.voice_commands
    elif feature == Feature.EXPERT_TOOLS:
        return config.type == PlanType.EXPERT
    return False


def can_access_feature(
    user: Optional[User],
    feature,
    plans: Optional[dict[PlanType, PlanConfig]],
) -> bool:
    """
    Check whether the user's plan unlocks a feature.

    Admins pass every feature check regardless of plan.
    """
    if user is None:
        return False
    try:
        if user.role == UserRole.ADMIN:
            return True
        feature = Feature(feature)
        if not plans:
            return False
        return bool(_plan_has(get_plan_config(plans, user.plan), feature))
    except (ValueError, AttributeError, TypeError) as e:
        logger.debug(f"Denying feature {feature!r} for {getattr(user, 'id', None)}: {e}")
        return False


def can_create(count, limit) -> bool:
    """True when ``limit`` is unlimited (-1) or ``count`` is still below it."""
    try:
        return is_unlimited(limit) or count < limit
    except TypeError:
        return False


def can_navigate(
    user: Optional[User],
    page: str,
    plans: Optional[dict[PlanType, PlanConfig]],
) -> bool:
    """Check whether the user may open a page."""
    if user is None or not user.is_active:
        return False
    page = (page or "").strip().lower().lstrip("/")
    if page in OPEN_PAGES:
        return True
    if page in ADMIN_PAGES:
        return user.role == UserRole.ADMIN
    feature = PAGE_FEATURES.get(page)
    if feature is None:
        return False
    return can_access_feature(user, feature, plans)


def require_feature(
    user: Optional[User],
    feature,
    plans: Optional[dict[PlanType, PlanConfig]],
) -> None:
    """
    Raise instead of returning False.

    Raises:
        PermissionDeniedError: If the feature is locked for the user
    """
    if not can_access_feature(user, feature, plans):
        raise PermissionDeniedError(f"Feature not available on this plan: {feature}")
