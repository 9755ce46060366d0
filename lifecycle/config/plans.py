"""Plan configuration - defines the usage ceiling for each subscription tier."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PlanConfig:
    """Configuration for a subscription plan tier."""

    tier: str
    display_name: str
    max_letters: int  # Generations allowed per rolling quota window


PLANS: dict[str, PlanConfig] = {
    "free": PlanConfig(
        tier="free",
        display_name="Free",
        max_letters=10,
    ),
    "premium": PlanConfig(
        tier="premium",
        display_name="Premium",
        max_letters=1000,
    ),
}


def get_plan(tier: str | None) -> PlanConfig:
    """
    Get plan configuration by tier name.

    Defaults to 'free' if tier is unknown or missing.
    """
    if tier is None:
        return PLANS["free"]
    return PLANS.get(tier, PLANS["free"])


def tier_for_subscription_status(status: str) -> str:
    """Map a Stripe subscription status onto the account tier it grants."""
    if status in ("active", "trialing"):
        return "premium"
    return "free"
