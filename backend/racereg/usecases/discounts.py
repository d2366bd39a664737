from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..domain.errors import (
    DiscountAlreadyAppliedError,
    DiscountInvalidError,
    ErrorCode,
    ForbiddenError,
    InvalidStateTransitionError,
    MaxRedemptionsError,
    NotFoundError,
    RegistrationExpiredError,
)
from ..domain.expiry import is_expired_hold
from ..domain.pricing import compute_discount_amount_cents
from ..domain.repositories import DiscountRepository, RegistrationRepository
from ..domain.services import ensure_discount_code_usable, ensure_redemptions_available
from ..models import DiscountCode, DiscountRedemption, Registration
from ..utils.time import utcnow
from .pricing import EDITABLE_STATUSES, recompute_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscountValidation:
    code: DiscountCode
    active_redemptions: int
    discount_amount_cents: int


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _ensure_editable(registration: Registration, user_id: int, now: datetime) -> None:
    if registration.buyer_user_id != user_id:
        raise ForbiddenError("Permission denied")
    if is_expired_hold(registration.status, registration.expires_at, now):
        raise RegistrationExpiredError()
    if registration.status not in EDITABLE_STATUSES:
        raise InvalidStateTransitionError("Discounts can no longer be changed for this registration")


async def validate_discount_code(
    discount_repo: DiscountRepository,
    *,
    edition_id: int,
    code: str,
    base_price_cents: int,
    now: datetime | None = None,
) -> DiscountValidation:
    """Advisory check; nothing is locked and nothing is written."""
    now = now or utcnow()
    discount = ensure_discount_code_usable(await discount_repo.get_by_code(edition_id, normalize_code(code)), now)
    active = await discount_repo.count_active_redemptions(discount.id, now)
    ensure_redemptions_available(discount, active)
    return DiscountValidation(
        code=discount,
        active_redemptions=active,
        discount_amount_cents=compute_discount_amount_cents(base_price_cents, discount.percent_off),
    )


async def apply_discount_code(
    discount_repo: DiscountRepository,
    reg_repo: RegistrationRepository,
    *,
    registration_id: int,
    user_id: int,
    code: str,
    now: datetime | None = None,
) -> tuple[Registration, DiscountRedemption]:
    now = now or utcnow()
    registration = await reg_repo.get(registration_id)
    if registration is None:
        raise NotFoundError("Registration not found")
    _ensure_editable(registration, user_id, now)
    if await discount_repo.get_redemption(registration.id) is not None:
        raise DiscountAlreadyAppliedError()

    discount = ensure_discount_code_usable(
        await discount_repo.get_by_code(registration.edition_id, normalize_code(code)), now
    )

    # Lock order: discount code, then registration.
    locked_code = ensure_discount_code_usable(await discount_repo.lock_code(discount.id), now)
    locked = await reg_repo.get_for_update(registration.id)
    if locked is None:
        raise NotFoundError("Registration not found")
    _ensure_editable(locked, user_id, now)

    active = await discount_repo.count_active_redemptions(locked_code.id, now)
    try:
        ensure_redemptions_available(locked_code, active)
    except MaxRedemptionsError:
        logger.info("discount code %s at redemption cap (%s)", locked_code.id, active)
        raise

    redemption = await discount_repo.create_redemption(
        registration_id=locked.id,
        discount_code_id=locked_code.id,
        discount_amount_cents=compute_discount_amount_cents(locked.base_price_cents, locked_code.percent_off),
        redeemed_at=now,
    )
    updated = await recompute_total(reg_repo, discount_repo, locked)
    return updated, redemption


async def remove_discount_code(
    discount_repo: DiscountRepository,
    reg_repo: RegistrationRepository,
    *,
    registration_id: int,
    user_id: int,
    now: datetime | None = None,
) -> tuple[Registration, DiscountRedemption]:
    now = now or utcnow()
    registration = await reg_repo.get_for_update(registration_id)
    if registration is None:
        raise NotFoundError("Registration not found")
    _ensure_editable(registration, user_id, now)

    redemption = await discount_repo.get_redemption(registration.id)
    if redemption is None:
        raise DiscountInvalidError("No discount code is applied", code=ErrorCode.NO_DISCOUNT)
    await discount_repo.delete_redemption(redemption)
    updated = await recompute_total(reg_repo, discount_repo, registration)
    return updated, redemption


async def list_discount_codes(
    discount_repo: DiscountRepository,
    *,
    edition_id: int,
    now: datetime | None = None,
) -> list[tuple[DiscountCode, int]]:
    return await discount_repo.list_codes_with_counts(edition_id, now or utcnow())
