from dataclasses import dataclass
from typing import Dict, List, Tuple
from flask import current_app

from paysync.errors import ConfigurationError

# Canonical feature keys
CUSTOMER_ENTITLEMENTS: List[str] = [
    "tickets.purchase",
    "venues.favorites",
    "offers.member",
]

CUSTOMER_PRO_ENTITLEMENTS: List[str] = CUSTOMER_ENTITLEMENTS + [
    "offers.priority",
    "tickets.skip_line",
]

BUSINESS_ENTITLEMENTS: List[str] = [
    "venue.manage",
    "offers.publish",
    "orders.scan",
]

BUSINESS_PRO_ENTITLEMENTS: List[str] = BUSINESS_ENTITLEMENTS + [
    "analytics.advanced",
    "priority.support",
]


@dataclass(frozen=True)
class Plan:
    key: str
    trial_days: int
    price_config_key: str
    entitlements: Tuple[str, ...]


PLANS: Dict[str, Plan] = {
    "customer_monthly": Plan("customer_monthly", 7, "STRIPE_PRICE_CUSTOMER_MONTHLY", tuple(CUSTOMER_ENTITLEMENTS)),
    "customer_pro": Plan("customer_pro", 7, "STRIPE_PRICE_CUSTOMER_PRO", tuple(CUSTOMER_PRO_ENTITLEMENTS)),
    "business_monthly": Plan("business_monthly", 30, "STRIPE_PRICE_BUSINESS_MONTHLY", tuple(BUSINESS_ENTITLEMENTS)),
    "business_pro": Plan("business_pro", 90, "STRIPE_PRICE_BUSINESS_PRO", tuple(BUSINESS_PRO_ENTITLEMENTS)),
}

# Short keys still sent by older mobile builds
PLAN_ALIASES: Dict[str, str] = {
    "customer": "customer_monthly",
    "business": "business_monthly",
}


def normalize_plan_key(raw: str | None) -> str:
    key = (raw or "").strip().lower()
    return PLAN_ALIASES.get(key, key)


def is_known_plan(raw: str | None) -> bool:
    return normalize_plan_key(raw) in PLANS


def resolve_plan(raw: str | None) -> Tuple[Plan, str]:
    """
    Return (plan, price_id) for a plan key. Unknown or unpriced plans are a
    deployment problem, not a user error: raise ConfigurationError.
    """
    key = normalize_plan_key(raw)
    plan = PLANS.get(key)
    if plan is None:
        raise ConfigurationError(f"Unknown plan {raw!r}", plan=raw)
    price_id = current_app.config.get(plan.price_config_key)
    if not price_id:
        current_app.logger.error(
            "billing.catalog.price_missing",
            extra={"plan": key, "config_key": plan.price_config_key},
        )
        raise ConfigurationError(f"Plan {key!r} has no price configured", plan=key)
    return plan, price_id


def resolve_entitlements(plan_key: str | None) -> List[str]:
    """Feature keys granted by a plan; empty for unknown plans."""
    plan = PLANS.get(normalize_plan_key(plan_key))
    return list(plan.entitlements) if plan else []
