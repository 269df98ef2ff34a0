"""Pure business logic for billing operations.

This module contains the tier/price rules of billing: which price is which
plan, how two plans compare, what a plan change should do, and what each tier
includes. It is separated from infrastructure concerns like database and
Stripe API and performs no I/O.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from planstate.core.config import settings
from planstate.core.exceptions import UnknownPriceError
from planstate.schemas.billing import BillingInterval, Tier


class TierRank(Enum):
    """Tier hierarchy for upgrade/downgrade decisions."""

    PERSONAL = 0
    PRO = 1
    ENTERPRISE = 2

    @classmethod
    def from_tier(cls, tier: Tier) -> "TierRank":
        """Convert Tier to TierRank."""
        return cls[tier.name]


INTERVAL_RANK = {
    BillingInterval.MONTH: 0,
    BillingInterval.YEAR: 1,
}


class ChangeType(Enum):
    """Type of plan change."""

    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    SAME = "same"
    # Tier and interval move in opposite directions
    AMBIGUOUS = "ambiguous"


class PlanChangeAction(Enum):
    """What the orchestrator does for a classified change."""

    IMMEDIATE_UPGRADE = "immediate_upgrade"
    TRIAL_UPGRADE = "trial_upgrade"
    TRIAL_DOWNGRADE = "trial_downgrade"
    SCHEDULED_DOWNGRADE = "scheduled_downgrade"
    NO_OP = "no_op"
    REJECT = "reject"


@dataclass(frozen=True)
class PricePlan:
    """A configured price and the plan it stands for."""

    price_id: str
    tier: Tier
    interval: BillingInterval


@dataclass
class PlanChangeContext:
    """Context for plan change decisions."""

    current: PricePlan
    target: PricePlan
    is_trialing: bool


@dataclass
class PlanChangeDecision:
    """Result of plan change analysis."""

    allowed: bool
    change_type: ChangeType
    action: PlanChangeAction
    message: str
    proration_behavior: Optional[str] = None
    payment_behavior: Optional[str] = None


# Plan configuration
SEAT_LIMITS = {
    Tier.PERSONAL: 1,
    Tier.PRO: 3,
    Tier.ENTERPRISE: -1,
}

UNLIMITED_SEATS = -1

_PERSONAL_FEATURES = ["basic_api", "community_support"]
_PRO_FEATURES = _PERSONAL_FEATURES + [
    "advanced_api",
    "custom_schemas",
    "api_analytics",
    "email_support",
    "priority_queue",
]
_ENTERPRISE_FEATURES = _PRO_FEATURES + [
    "unlimited_members",
    "advanced_analytics",
    "custom_integrations",
    "priority_support",
    "sso_saml",
    "audit_logs",
    "custom_branding",
]

TIER_FEATURES = {
    Tier.PERSONAL: _PERSONAL_FEATURES,
    Tier.PRO: _PRO_FEATURES,
    Tier.ENTERPRISE: _ENTERPRISE_FEATURES,
}

PLAN_NAMES = {
    Tier.PERSONAL: "Personal Plan",
    Tier.PRO: "Pro Plan",
    Tier.ENTERPRISE: "Enterprise Plan",
}

# Only the entry tier can be tried for free
TRIAL_TIERS = frozenset({Tier.PERSONAL})


class PriceCatalog:
    """Bidirectional mapping between Stripe price IDs and plans."""

    def __init__(self, price_ids: dict[str, str]):
        """Build the catalog from ``<tier>_<interval>`` keyed price IDs."""
        self._by_price: dict[str, PricePlan] = {}
        self._by_plan: dict[tuple[Tier, BillingInterval], str] = {}
        for key, price_id in price_ids.items():
            tier_value, interval_value = key.split("_", 1)
            plan = PricePlan(price_id, Tier(tier_value), BillingInterval(interval_value))
            self._by_price[price_id] = plan
            self._by_plan[(plan.tier, plan.interval)] = price_id

    def lookup(self, price_id: Optional[str]) -> Optional[PricePlan]:
        """Return the plan of a price, or None when the price is not configured."""
        if not price_id:
            return None
        return self._by_price.get(price_id)

    def resolve(self, price_id: str) -> PricePlan:
        """Return the plan of a price.

        Raises:
            UnknownPriceError: If the price is not configured.
        """
        plan = self.lookup(price_id)
        if plan is None:
            raise UnknownPriceError(price_id)
        return plan

    def price_for(self, tier: Tier, interval: BillingInterval) -> str:
        """Return the configured price ID of a plan."""
        return self._by_plan[(tier, interval)]

    def plans(self) -> list[PricePlan]:
        """All configured plans, cheapest tier first, monthly before yearly."""
        return sorted(
            self._by_price.values(),
            key=lambda p: (TierRank.from_tier(p.tier).value, INTERVAL_RANK[p.interval]),
        )


def get_catalog() -> PriceCatalog:
    """Catalog built from the configured price IDs.

    Raises:
        ConfigurationError: If any price ID is missing from the configuration.
    """
    return PriceCatalog(settings.price_ids)


def tier_of(price_id: str, catalog: Optional[PriceCatalog] = None) -> Tier:
    """Tier of a configured price. Unknown prices raise ``UnknownPriceError``."""
    return (catalog or get_catalog()).resolve(price_id).tier


def interval_of(price_id: str, catalog: Optional[PriceCatalog] = None) -> BillingInterval:
    """Billing interval of a configured price. Unknown prices raise ``UnknownPriceError``."""
    return (catalog or get_catalog()).resolve(price_id).interval


def classify_change(current: PricePlan, target: PricePlan) -> ChangeType:
    """Classify a move between two plans on the tier and interval axes.

    An axis moving up with the other equal or up is an upgrade; an axis moving
    down with the other equal or down is a downgrade. Axes moving in opposite
    directions are ambiguous.
    """
    tier_delta = TierRank.from_tier(target.tier).value - TierRank.from_tier(current.tier).value
    interval_delta = INTERVAL_RANK[target.interval] - INTERVAL_RANK[current.interval]

    if tier_delta == 0 and interval_delta == 0:
        return ChangeType.SAME
    if tier_delta >= 0 and interval_delta >= 0:
        return ChangeType.UPGRADE
    if tier_delta <= 0 and interval_delta <= 0:
        return ChangeType.DOWNGRADE
    return ChangeType.AMBIGUOUS


def is_upgrade(a: str, b: str, catalog: Optional[PriceCatalog] = None) -> bool:
    """Whether moving from price ``a`` to price ``b`` is an upgrade."""
    catalog = catalog or get_catalog()
    return classify_change(catalog.resolve(a), catalog.resolve(b)) == ChangeType.UPGRADE


def is_downgrade(a: str, b: str, catalog: Optional[PriceCatalog] = None) -> bool:
    """Whether moving from price ``a`` to price ``b`` is a downgrade."""
    catalog = catalog or get_catalog()
    return classify_change(catalog.resolve(a), catalog.resolve(b)) == ChangeType.DOWNGRADE


def describe_plan(plan: PricePlan) -> str:
    """Short human-readable name of a plan, e.g. ``Pro (yearly)``."""
    cadence = "monthly" if plan.interval == BillingInterval.MONTH else "yearly"
    return f"{plan.tier.value.capitalize()} ({cadence})"


def analyze_plan_change(context: PlanChangeContext) -> PlanChangeDecision:
    """Analyze a plan change request and determine the appropriate action.

    Trialing subscriptions switch price immediately in both directions without
    proration, leaving the trial end untouched. Active subscriptions upgrade
    immediately and pay the prorated difference now, and downgrade at the end
    of the current period.
    """
    change_type = classify_change(context.current, context.target)
    target_name = describe_plan(context.target)

    if change_type == ChangeType.SAME:
        return PlanChangeDecision(
            allowed=True,
            change_type=change_type,
            action=PlanChangeAction.NO_OP,
            message=f"Already on the {target_name} plan, no change needed",
        )

    if change_type == ChangeType.AMBIGUOUS:
        return PlanChangeDecision(
            allowed=False,
            change_type=change_type,
            action=PlanChangeAction.REJECT,
            message=(
                f"Moving from {describe_plan(context.current)} to {target_name} changes the "
                "tier and the billing interval in opposite directions. Change the tier and "
                "the billing interval in separate steps."
            ),
        )

    if context.is_trialing:
        upgrade = change_type == ChangeType.UPGRADE
        return PlanChangeDecision(
            allowed=True,
            change_type=change_type,
            action=PlanChangeAction.TRIAL_UPGRADE if upgrade else PlanChangeAction.TRIAL_DOWNGRADE,
            message=(
                f"Switched to {target_name}. Your trial continues until its original end date"
            ),
            proration_behavior="none",
        )

    if change_type == ChangeType.UPGRADE:
        return PlanChangeDecision(
            allowed=True,
            change_type=change_type,
            action=PlanChangeAction.IMMEDIATE_UPGRADE,
            message=f"Upgraded to {target_name}. The prorated difference has been charged",
            proration_behavior="always_invoice",
            payment_behavior="error_if_incomplete",
        )

    return PlanChangeDecision(
        allowed=True,
        change_type=change_type,
        action=PlanChangeAction.SCHEDULED_DOWNGRADE,
        message=f"Your plan will change to {target_name} at the end of the current billing period",
    )


def interval_or_default(value: Optional[str]) -> BillingInterval:
    """Billing interval named by Stripe, monthly when it is not one we sell."""
    try:
        return BillingInterval(value)
    except ValueError:
        return BillingInterval.MONTH


def get_seat_limit(tier: Tier) -> int:
    """Seat limit of a tier; ``UNLIMITED_SEATS`` means no limit."""
    return SEAT_LIMITS[tier]


def get_features(tier: Tier) -> list[str]:
    """Features included in a tier."""
    return list(TIER_FEATURES[tier])


def tier_has_feature(tier: Tier, feature: str) -> bool:
    """Whether a tier includes a feature."""
    return feature in TIER_FEATURES[tier]


def plan_name(tier: Tier) -> str:
    """Display name of a tier's plan."""
    return PLAN_NAMES[tier]
