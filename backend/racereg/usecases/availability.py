"""Display-only reads. Nothing here locks, so callers must never admit on it."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..domain.errors import NotFoundError
from ..domain.repositories import EventRepository, RegistrationRepository
from ..domain.pricing import select_current_tier, select_next_tier
from ..domain.services import CapacitySnapshot, CapacityTargetKind, remaining_spots, resolve_capacity_target
from ..models import PricingTier
from ..utils.time import utcnow


@dataclass(frozen=True)
class CurrentPricing:
    distance_id: int
    current_tier: PricingTier | None
    next_tier: PricingTier | None
    tiers: list[PricingTier] = field(default_factory=list)

    @property
    def price_cents(self) -> int:
        return self.current_tier.price_cents if self.current_tier is not None else 0


@dataclass(frozen=True)
class SpotsRemaining:
    distance_id: int
    edition_id: int
    scope: CapacityTargetKind | None
    capacity: int | None
    active_count: int
    remaining: int | None


async def get_current_pricing(
    event_repo: EventRepository,
    *,
    distance_id: int,
    now: datetime | None = None,
) -> CurrentPricing:
    now = now or utcnow()
    distance = await event_repo.get_distance(distance_id)
    if distance is None:
        raise NotFoundError("Distance not found")
    tiers = await event_repo.list_pricing_tiers(distance.id)
    current = select_current_tier(tiers, now)
    return CurrentPricing(
        distance_id=distance.id,
        current_tier=current,
        next_tier=select_next_tier(tiers, now, current),
        tiers=list(tiers),
    )


async def get_spots_remaining(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    *,
    distance_id: int,
    now: datetime | None = None,
) -> SpotsRemaining:
    now = now or utcnow()
    distance = await event_repo.get_distance(distance_id)
    if distance is None:
        raise NotFoundError("Distance not found")
    edition = await event_repo.get_edition(distance.edition_id)
    if edition is None:
        raise NotFoundError("Event not found")

    target = resolve_capacity_target(
        edition_id=edition.id,
        distance_id=distance.id,
        capacity_scope=distance.capacity_scope,
        edition_shared_capacity=edition.shared_capacity,
        distance_capacity=distance.capacity,
    )
    if target is None:
        active = await reg_repo.count_active(now=now, distance_id=distance.id)
        return SpotsRemaining(distance.id, edition.id, None, None, active, None)

    if target.kind == CapacityTargetKind.EDITION:
        active = await reg_repo.count_active(now=now, edition_id=edition.id)
    else:
        active = await reg_repo.count_active(now=now, distance_id=distance.id)
    snapshot = CapacitySnapshot(capacity=target.capacity, active_count=active)
    return SpotsRemaining(
        distance_id=distance.id,
        edition_id=edition.id,
        scope=target.kind,
        capacity=target.capacity,
        active_count=active,
        remaining=remaining_spots(snapshot),
    )
