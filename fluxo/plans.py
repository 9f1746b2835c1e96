"""
Plan tiers: usage limits and feature flags.
"""

import copy
from typing import Optional, Union

from fluxo.database.models import PlanConfig, PlanFeatures, PlanType
from fluxo.errors import ValidationError

UNLIMITED = -1

DEFAULT_PLANS: dict[PlanType, PlanConfig] = {
    PlanType.BASIC: PlanConfig(
        type=PlanType.BASIC,
        name="Básico",
        price=29.90,
        max_contacts=50,
        max_opportunities=10,
        features=PlanFeatures(expenses=False, ai_assistant=False, voice_commands=False),
    ),
    PlanType.ADVANCED: PlanConfig(
        type=PlanType.ADVANCED,
        name="Profissional",
        price=79.90,
        max_contacts=500,
        max_opportunities=100,
        features=PlanFeatures(expenses=True, ai_assistant=True, voice_commands=False),
    ),
    PlanType.EXPERT: PlanConfig(
        type=PlanType.EXPERT,
        name="Expert AI",
        price=149.90,
        max_contacts=UNLIMITED,
        max_opportunities=UNLIMITED,
        features=PlanFeatures(expenses=True, ai_assistant=True, voice_commands=True),
    ),
}


def default_plans() -> dict[PlanType, PlanConfig]:
    """Fresh copy of the seeded plan configurations."""
    return copy.deepcopy(DEFAULT_PLANS)


def get_plan_config(
    plans: Optional[dict[PlanType, PlanConfig]],
    plan: Union[PlanType, str, None],
) -> PlanConfig:
    """
    Look up a plan configuration.

    Unknown or missing plans resolve to the BASIC tier so callers never
    have to handle a missing config.

    Args:
        plans: Stored plan configurations, possibly incomplete
        plan: Plan type or its name

    Returns:
        The matching PlanConfig, or the BASIC one
    """
    plans = plans or {}
    try:
        plan_type = PlanType(plan)
    except ValueError:
        plan_type = PlanType.BASIC

    config = plans.get(plan_type) or plans.get(PlanType.BASIC)
    if config is None:
        config = DEFAULT_PLANS[PlanType.BASIC]
    return config


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def validate_plan_config(config: PlanConfig) -> None:
    """Reject limits that are neither -1 nor non-negative."""
    for label, limit in (
        ("max_contacts", config.max_contacts),
        ("max_opportunities", config.max_opportunities),
    ):
        if not isinstance(limit, int) or isinstance(limit, bool):
            raise ValidationError(f"{label} must be an integer")
        if limit < 0 and not is_unlimited(limit):
            raise ValidationError(f"{label} must be -1 or non-negative, got {limit}")
    if config.price < 0:
        raise ValidationError("price must not be negative")
    if not config.name.strip():
        raise ValidationError("plan name is required")
