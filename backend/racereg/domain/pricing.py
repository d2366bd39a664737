from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol, Sequence

from ..models import PricingTier


def percent_of(amount_cents: int, percent: int | float) -> int:
    """Half-up rounded ``amount_cents * percent / 100``."""
    value = Decimal(amount_cents) * Decimal(str(percent)) / Decimal(100)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


class FeePolicy(Protocol):
    def fees_for(self, base_price_cents: int) -> int: ...


@dataclass(frozen=True)
class PercentageFeePolicy:
    percent: int = 5

    def fees_for(self, base_price_cents: int) -> int:
        return percent_of(base_price_cents, self.percent)


@dataclass(frozen=True)
class PriceQuote:
    base_price_cents: int
    fees_cents: int
    tax_cents: int
    total_cents: int


def quote_price(base_price_cents: int, fee_policy: FeePolicy, *, tax_cents: int = 0) -> PriceQuote:
    fees_cents = fee_policy.fees_for(base_price_cents)
    return PriceQuote(
        base_price_cents=base_price_cents,
        fees_cents=fees_cents,
        tax_cents=tax_cents,
        total_cents=base_price_cents + fees_cents + tax_cents,
    )


def compute_total_cents(
    *,
    base_price_cents: int,
    fees_cents: int,
    tax_cents: int,
    add_on_total_cents: int = 0,
    discount_amount_cents: int = 0,
) -> int:
    return max(0, base_price_cents + fees_cents + tax_cents + add_on_total_cents - discount_amount_cents)


def compute_discount_amount_cents(base_price_cents: int, percent_off: int) -> int:
    return percent_of(base_price_cents, percent_off)


def _tier_contains(tier: PricingTier, now: datetime) -> bool:
    if tier.starts_at is not None and now < tier.starts_at:
        return False
    if tier.ends_at is not None and now >= tier.ends_at:
        return False
    return True


def select_current_tier(tiers: Sequence[PricingTier], now: datetime) -> PricingTier | None:
    """Return the tier whose ``[starts_at, ends_at)`` window contains ``now``.

    Overlapping matches are broken by ``sort_order`` (then input order). When
    nothing matches, the lowest ``sort_order`` tier is the fallback; ``None``
    only when the distance has no tiers at all.
    """
    if not tiers:
        return None
    matching = [tier for tier in tiers if _tier_contains(tier, now)]
    candidates = matching or list(tiers)
    return min(candidates, key=lambda tier: tier.sort_order)


def select_next_tier(
    tiers: Sequence[PricingTier],
    now: datetime,
    current: PricingTier | None,
) -> PricingTier | None:
    upcoming = [
        tier
        for tier in tiers
        if tier.starts_at is not None
        and tier.starts_at > now
        and (current is None or tier.id != current.id)
    ]
    if not upcoming:
        return None
    return min(upcoming, key=lambda tier: (tier.starts_at, tier.sort_order))
