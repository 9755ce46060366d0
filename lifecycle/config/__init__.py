"""Configuration package."""

from lifecycle.config.plans import PLANS, PlanConfig, get_plan, tier_for_subscription_status
from lifecycle.config.settings import Settings, settings

__all__ = [
    "PlanConfig",
    "PLANS",
    "get_plan",
    "tier_for_subscription_status",
    "Settings",
    "settings",
]
