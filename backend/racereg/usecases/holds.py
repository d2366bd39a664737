"""Capacity-checked hold creation.

Every admission decision for a scope (one distance, or one edition's shared
pool) runs as lock-then-count-then-insert inside the caller's transaction.
The edition row and then the distance row are locked, and the limit is read
from those locked rows. The locks are released only when that transaction
ends, so the Nth admitted hold has always observed the previous N-1 and the
latest committed capacity.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence

from ..domain.errors import NotFoundError, SoldOutError
from ..domain.pricing import PriceQuote
from ..domain.repositories import EventRepository, RegistrationRepository
from ..domain.services import (
    CapacitySnapshot,
    CapacityTarget,
    CapacityTargetKind,
    ensure_capacity_available,
    resolve_capacity_target,
)
from ..models import PaymentResponsibility, Registration, RegistrationStatus

logger = logging.getLogger(__name__)


async def lock_capacity_target(
    event_repo: EventRepository,
    *,
    edition_id: int,
    distance_id: int,
) -> CapacityTarget | None:
    """Lock edition then distance and resolve the scope from the locked rows."""
    edition = await event_repo.lock_edition(edition_id)
    if edition is None:
        raise NotFoundError("Edition not found")
    distance = await event_repo.lock_distance(distance_id)
    if distance is None or distance.edition_id != edition.id:
        raise NotFoundError("Distance not found")
    return resolve_capacity_target(
        edition_id=edition.id,
        distance_id=distance.id,
        capacity_scope=distance.capacity_scope,
        edition_shared_capacity=edition.shared_capacity,
        distance_capacity=distance.capacity,
    )


async def lock_and_check_capacity(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    *,
    edition_id: int,
    distance_id: int,
    now: datetime,
    exclude_ids: Sequence[int] = (),
) -> int | None:
    """Lock the capacity rows for a distance and verify one more spot fits.

    Returns the spots left after admitting one (None when unconstrained).
    """
    target = await lock_capacity_target(event_repo, edition_id=edition_id, distance_id=distance_id)
    if target is None:
        return None

    if target.kind == CapacityTargetKind.EDITION:
        active = await reg_repo.count_active(now=now, edition_id=target.target_id, exclude_ids=exclude_ids)
    else:
        active = await reg_repo.count_active(now=now, distance_id=target.target_id, exclude_ids=exclude_ids)

    try:
        return ensure_capacity_available(CapacitySnapshot(capacity=target.capacity, active_count=active))
    except SoldOutError:
        logger.info("capacity exhausted for %s %s (%s/%s)", target.kind, target.target_id, active, target.capacity)
        raise


async def reserve_hold(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    *,
    edition_id: int,
    distance_id: int,
    buyer_user_id: int | None,
    status: RegistrationStatus,
    expires_at: datetime | None,
    quote: PriceQuote,
    now: datetime,
    payment_responsibility: PaymentResponsibility = PaymentResponsibility.SELF_PAY,
    registrant_snapshot: dict[str, Any] | None = None,
    registrant_user_id: int | None = None,
) -> Registration:
    """Create one registration row if the scope still has room.

    Raises SoldOutError without writing anything when the scope is full.
    """
    await lock_and_check_capacity(event_repo, reg_repo, edition_id=edition_id, distance_id=distance_id, now=now)

    registration = await reg_repo.create(
        edition_id=edition_id,
        distance_id=distance_id,
        buyer_user_id=buyer_user_id,
        payment_responsibility=payment_responsibility,
        status=status,
        expires_at=expires_at,
        quote=quote,
    )
    if registrant_snapshot is not None:
        await reg_repo.save_registrant(
            registration.id,
            user_id=registrant_user_id,
            profile_snapshot=registrant_snapshot,
            gender_identity=registrant_snapshot.get("genderIdentity"),
        )
    return registration
