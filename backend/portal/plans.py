# portal/plans.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

TIER_INTERNAL = "internal"
TIER_EXTERNAL = "external"
VALID_TIERS = (TIER_INTERNAL, TIER_EXTERNAL)

SUPPORTED_CURRENCIES = ("usd", "inr", "gbp", "eur", "aud", "cad")
DEFAULT_CURRENCY = "usd"

MEMBERSHIP_TERM_YEARS = 1

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing", "past_due")
SUBSCRIPTION_STATUSES = ("active", "canceled", "incomplete", "past_due", "trialing", "unpaid")


@dataclass(frozen=True)
class Tier:
    id: str
    name: str
    yearly_price: int


TIERS = {
    TIER_INTERNAL: Tier(TIER_INTERNAL, "Internal Membership", 99),
    TIER_EXTERNAL: Tier(TIER_EXTERNAL, "External Membership", 149),
}


def normalize_tier(value: Optional[str]) -> Optional[str]:
    t = (value or "").strip().lower()
    return t if t in VALID_TIERS else None


def normalize_currency(value: Optional[str]) -> Optional[str]:
    c = (value or DEFAULT_CURRENCY).strip().lower()
    return c if c in SUPPORTED_CURRENCIES else None


def tier_display_name(tier: str) -> str:
    t = TIERS.get(tier)
    return t.name if t else "Membership"


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def from_minor_units(amount: Optional[int]) -> Optional[float]:
    if amount is None:
        return None
    return int(amount) / 100


def one_term_after(start: datetime) -> datetime:
    try:
        return start.replace(year=start.year + MEMBERSHIP_TERM_YEARS)
    except ValueError:
        # Feb 29 -> Feb 28
        return start.replace(year=start.year + MEMBERSHIP_TERM_YEARS, day=28)


def is_active_status(status: Optional[str]) -> bool:
    return (status or "").strip().lower() in ACTIVE_SUBSCRIPTION_STATUSES
