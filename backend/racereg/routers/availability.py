from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyEventRepository, SqlAlchemyRegistrationRepository
from ..schemas import AvailabilityRead, PricingRead, PricingTierRead
from ..usecases import availability as availability_usecase
from ..utils.time import to_utc_naive
from .errors import to_http_exception

router = APIRouter(prefix="/distances", tags=["availability"])


def _resolve_at(at: Optional[datetime]) -> Optional[datetime]:
    if at is None:
        return None
    if at.tzinfo is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="at must have timezone")
    return to_utc_naive(at)


@router.get("/{distance_id}/pricing", response_model=PricingRead)
async def get_current_pricing(
    distance_id: int = Path(..., ge=1),
    at: Optional[datetime] = Query(default=None, description="Point in time (ISO 8601 with offset)"),
    session: AsyncSession = Depends(get_session),
) -> PricingRead:
    event_repo = SqlAlchemyEventRepository(session)
    try:
        pricing = await availability_usecase.get_current_pricing(
            event_repo,
            distance_id=distance_id,
            now=_resolve_at(at),
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc
    return PricingRead(
        distance_id=pricing.distance_id,
        price_cents=pricing.price_cents,
        current_tier=PricingTierRead.from_db(tier=pricing.current_tier) if pricing.current_tier else None,
        next_tier=PricingTierRead.from_db(tier=pricing.next_tier) if pricing.next_tier else None,
        tiers=[PricingTierRead.from_db(tier=tier) for tier in pricing.tiers],
    )


@router.get("/{distance_id}/availability", response_model=AvailabilityRead)
async def get_spots_remaining(
    distance_id: int = Path(..., ge=1),
    at: Optional[datetime] = Query(default=None, description="Point in time (ISO 8601 with offset)"),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    try:
        spots = await availability_usecase.get_spots_remaining(
            event_repo,
            reg_repo,
            distance_id=distance_id,
            now=_resolve_at(at),
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc
    return AvailabilityRead(
        distance_id=spots.distance_id,
        edition_id=spots.edition_id,
        scope=spots.scope.value if spots.scope is not None else None,
        capacity=spots.capacity,
        active_count=spots.active_count,
        remaining=spots.remaining,
    )
