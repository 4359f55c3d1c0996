"""Subscription plans and feature gating."""

from enum import Enum

from fastapi import HTTPException, status

from tender_engine.core.logging import get_logger
from tender_engine.db.user_settings import get_user_plan

logger = get_logger(__name__)


class Plan(str, Enum):
    FREE = "free"
    PRO = "pro"
    ADMIN = "admin"


PLAN_RANK = {Plan.FREE: 0, Plan.PRO: 1, Plan.ADMIN: 2}

FEATURE_MIN_PLAN: dict[str, Plan] = {
    "dce-analysis": Plan.PRO,
}


def normalize_plan(value: str | None) -> Plan:
    """Map a stored plan value to a Plan, defaulting to free."""
    try:
        return Plan((value or "").strip().lower())
    except ValueError:
        return Plan.FREE


def has_feature(plan: Plan, feature: str) -> bool:
    """Whether ``plan`` unlocks ``feature``. Unknown features are open to all plans."""
    required = FEATURE_MIN_PLAN.get(feature, Plan.FREE)
    return PLAN_RANK[plan] >= PLAN_RANK[required]


def resolve_plan(user_email: str) -> Plan:
    """Read a caller's plan; a missing settings row means free."""
    return normalize_plan(get_user_plan(user_email))


def require_feature(user_email: str, feature: str) -> Plan:
    """
    Check that a caller's plan unlocks ``feature``.

    Returns:
        The caller's plan

    Raises:
        HTTPException: 403 if the plan does not include the feature
    """
    plan = resolve_plan(user_email)
    if not has_feature(plan, feature):
        logger.info(f"Feature {feature} denied for plan {plan.value}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Feature '{feature}' requires the {FEATURE_MIN_PLAN[feature].value} plan",
        )
    return plan
