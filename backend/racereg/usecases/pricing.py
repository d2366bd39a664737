from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from ..domain.errors import (
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    RegistrationExpiredError,
    ValidationError,
)
from ..domain.expiry import is_expired_hold
from ..domain.pricing import compute_total_cents
from ..domain.repositories import DiscountRepository, EventRepository, RegistrationRepository
from ..models import AddOnSelection, Registration, RegistrationStatus
from ..utils.time import utcnow

EDITABLE_STATUSES = (RegistrationStatus.STARTED, RegistrationStatus.SUBMITTED)


@dataclass(frozen=True)
class AddOnChoice:
    option_id: int
    quantity: int


async def recompute_total(
    reg_repo: RegistrationRepository,
    discount_repo: DiscountRepository,
    registration: Registration,
) -> Registration:
    """Persist ``total_cents`` from its current inputs.

    Runs after every change to add-ons or the discount redemption so readers
    can take ``total_cents`` as-is.
    """
    add_on_total = await reg_repo.sum_add_on_totals(registration.id)
    redemption = await discount_repo.get_redemption(registration.id)
    total = compute_total_cents(
        base_price_cents=registration.base_price_cents,
        fees_cents=registration.fees_cents,
        tax_cents=registration.tax_cents,
        add_on_total_cents=add_on_total,
        discount_amount_cents=redemption.discount_amount_cents if redemption is not None else 0,
    )
    return await reg_repo.update_amounts(registration, total_cents=total)


async def submit_add_on_selections(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    discount_repo: DiscountRepository,
    *,
    registration_id: int,
    user_id: int,
    choices: Sequence[AddOnChoice],
    now: datetime | None = None,
) -> tuple[Registration, list[AddOnSelection]]:
    """Replace the registration's add-on selections with ``choices``.

    A quantity of zero drops the option. Options left out are soft-deleted.
    """
    now = now or utcnow()
    registration = await reg_repo.get_for_update(registration_id)
    if registration is None:
        raise NotFoundError("Registration not found")
    if registration.buyer_user_id != user_id:
        raise ForbiddenError("Permission denied")
    if is_expired_hold(registration.status, registration.expires_at, now):
        raise RegistrationExpiredError()
    if registration.status not in EDITABLE_STATUSES:
        raise InvalidStateTransitionError("Add-ons can no longer be changed for this registration")

    option_ids = [choice.option_id for choice in choices]
    if len(set(option_ids)) != len(option_ids):
        raise ValidationError("Each add-on may appear only once")
    if any(choice.quantity < 0 for choice in choices):
        raise ValidationError("Quantity must not be negative")
    wanted = [choice for choice in choices if choice.quantity > 0]

    options = {option.id: option for option in await event_repo.list_add_on_options(c.option_id for c in wanted)}
    for choice in wanted:
        option = options.get(choice.option_id)
        if option is None:
            raise NotFoundError("Add-on not found")
        if (
            not option.is_active
            or option.edition_id != registration.edition_id
            or (option.distance_id is not None and option.distance_id != registration.distance_id)
        ):
            raise ValidationError(f"Add-on {option.label} is not available for this registration")
        if choice.quantity > option.max_qty_per_order:
            raise ValidationError(f"At most {option.max_qty_per_order} of {option.label} per order")

    selections = [
        await reg_repo.upsert_add_on_selection(
            registration_id=registration.id,
            option_id=choice.option_id,
            quantity=choice.quantity,
            line_total_cents=options[choice.option_id].price_cents * choice.quantity,
            now=now,
        )
        for choice in wanted
    ]
    await reg_repo.remove_add_on_selections(
        registration.id,
        keep_option_ids=[choice.option_id for choice in wanted],
        now=now,
    )
    updated = await recompute_total(reg_repo, discount_repo, registration)
    return updated, selections
