from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Mapping, Sequence

from ..models import (
    CapacityScope,
    DiscountCode,
    EditionVisibility,
    EventEdition,
    GroupDiscountRule,
    RegistrationQuestion,
)
from .errors import (
    DiscountInvalidError,
    ErrorCode,
    EventNotAvailableError,
    MaxRedemptionsError,
    SoldOutError,
)


class CapacityTargetKind(StrEnum):
    DISTANCE = "distance"
    EDITION = "edition"


@dataclass(frozen=True)
class CapacityTarget:
    """The row whose lock serializes admissions, and the limit it enforces."""

    kind: CapacityTargetKind
    target_id: int
    capacity: int


@dataclass(frozen=True)
class CapacitySnapshot:
    capacity: int | None
    active_count: int


def resolve_capacity_target(
    *,
    edition_id: int,
    distance_id: int,
    capacity_scope: CapacityScope,
    edition_shared_capacity: int | None,
    distance_capacity: int | None,
) -> CapacityTarget | None:
    """Pick the capacity counter for a distance, or None when unconstrained.

    A shared-pool distance whose edition has no shared capacity falls back to
    its own per-distance capacity.
    """
    if capacity_scope == CapacityScope.SHARED_POOL and edition_shared_capacity is not None:
        return CapacityTarget(CapacityTargetKind.EDITION, edition_id, edition_shared_capacity)
    if distance_capacity is not None:
        return CapacityTarget(CapacityTargetKind.DISTANCE, distance_id, distance_capacity)
    return None


def ensure_capacity_available(snapshot: CapacitySnapshot) -> int | None:
    """
    Pure admission rule: a new or continuing reservation fits iff
    ``active_count < capacity``. Returns the spots left after admitting it
    (None when unconstrained). Raises SoldOutError otherwise.
    """
    if snapshot.capacity is None:
        return None
    if snapshot.active_count >= snapshot.capacity:
        raise SoldOutError("Distance is sold out")
    return snapshot.capacity - snapshot.active_count - 1


def remaining_spots(snapshot: CapacitySnapshot) -> int | None:
    if snapshot.capacity is None:
        return None
    return max(snapshot.capacity - snapshot.active_count, 0)


def ensure_registration_open(edition: EventEdition, now: datetime) -> None:
    if edition.visibility != EditionVisibility.PUBLISHED:
        raise EventNotAvailableError("Event is not published", code=ErrorCode.NOT_PUBLISHED)
    if edition.is_registration_paused:
        raise EventNotAvailableError("Registration is paused", code=ErrorCode.REGISTRATION_PAUSED)
    if edition.registration_opens_at is not None and now < edition.registration_opens_at:
        raise EventNotAvailableError("Registration has not opened yet", code=ErrorCode.REGISTRATION_NOT_OPEN)
    if edition.registration_closes_at is not None and now > edition.registration_closes_at:
        raise EventNotAvailableError("Registration has closed", code=ErrorCode.REGISTRATION_CLOSED)


def ensure_discount_code_usable(code: DiscountCode | None, now: datetime) -> DiscountCode:
    if code is None or code.deleted_at is not None:
        raise DiscountInvalidError("Invalid discount code")
    if not code.is_active:
        raise DiscountInvalidError("This discount code is no longer active")
    if code.starts_at is not None and now < code.starts_at:
        raise DiscountInvalidError("This discount code is not yet valid", code=ErrorCode.CODE_NOT_STARTED)
    if code.ends_at is not None and now >= code.ends_at:
        raise DiscountInvalidError("This discount code has expired", code=ErrorCode.CODE_EXPIRED)
    return code


def ensure_redemptions_available(code: DiscountCode, active_redemptions: int) -> None:
    if code.max_redemptions is not None and active_redemptions >= code.max_redemptions:
        raise MaxRedemptionsError()


def select_group_discount_rule(
    rules: Sequence[GroupDiscountRule],
    participant_count: int,
) -> GroupDiscountRule | None:
    """Highest active threshold the group reaches."""
    eligible = [rule for rule in rules if rule.is_active and participant_count >= rule.min_participants]
    if not eligible:
        return None
    return max(eligible, key=lambda rule: rule.min_participants)


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def find_missing_required_question(
    questions: Sequence[RegistrationQuestion],
    answers: Mapping[int, str | None],
) -> RegistrationQuestion | None:
    """First required question whose answer is absent or blank, in display order."""
    for question in questions:
        if question.is_required and not (answers.get(question.id) or "").strip():
            return question
    return None
