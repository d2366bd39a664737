from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from ..domain.errors import (
    AlreadyRegisteredError,
    ErrorCode,
    ForbiddenError,
    InvalidStateTransitionError,
    MissingPrerequisiteError,
    NotFoundError,
    RegistrationExpiredError,
    ValidationError,
)
from ..domain.expiry import ExpiryPolicy, is_expired_hold
from ..domain.pricing import FeePolicy, quote_price, select_current_tier
from ..domain.repositories import EventRepository, InviteRepository, RegistrationRepository, UserRepository
from ..domain.services import ensure_registration_open, find_missing_required_question, normalize_email
from ..models import (
    HOLD_STATUSES,
    PaymentResponsibility,
    QuestionType,
    Registration,
    RegistrationAnswer,
    RegistrationStatus,
    SignatureType,
    WaiverAcceptance,
)
from ..utils.time import utcnow
from .holds import lock_and_check_capacity, reserve_hold

logger = logging.getLogger(__name__)

FINALIZABLE_STATUSES = (RegistrationStatus.STARTED, RegistrationStatus.SUBMITTED)


@dataclass(frozen=True)
class AnswerInput:
    question_id: int
    value: str | None


async def _get_owned_registration(
    reg_repo: RegistrationRepository,
    registration_id: int,
    user_id: int,
) -> Registration:
    registration = await reg_repo.get(registration_id)
    if registration is None:
        raise NotFoundError("Registration not found")
    if registration.buyer_user_id != user_id:
        raise ForbiddenError("Permission denied")
    return registration


def _ensure_hold_usable(registration: Registration, now: datetime) -> None:
    if is_expired_hold(registration.status, registration.expires_at, now):
        raise RegistrationExpiredError()


def _state_lost(registration_id: int, expected: str) -> InvalidStateTransitionError:
    logger.info("guarded transition lost for registration %s (expected %s)", registration_id, expected)
    return InvalidStateTransitionError("Registration changed concurrently. Please refresh and try again.")


async def start_registration(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    user_repo: UserRepository,
    invite_repo: InviteRepository,
    *,
    distance_id: int,
    buyer_user_id: int,
    expiry_policy: ExpiryPolicy,
    fee_policy: FeePolicy,
    now: datetime | None = None,
) -> tuple[Registration, bool]:
    """Open a hold for ``buyer_user_id`` on a distance.

    Returns ``(registration, created)``. A buyer may hold one active
    registration per edition: repeating the call for the same distance while
    the hold is alive returns that hold with ``created=False``.
    """
    now = now or utcnow()

    distance = await event_repo.get_distance(distance_id)
    if distance is None:
        raise NotFoundError("Distance not found")

    # Serializes concurrent starts by the same buyer across the edition.
    edition = await event_repo.lock_edition(distance.edition_id)
    if edition is None:
        raise NotFoundError("Event not found")
    ensure_registration_open(edition, now)

    existing = await reg_repo.find_active_in_edition(buyer_user_id=buyer_user_id, edition_id=edition.id, now=now)
    if existing is not None:
        if existing.distance_id == distance.id and existing.status in HOLD_STATUSES:
            return existing, False
        raise AlreadyRegisteredError("You already have a registration for this event")

    user = await user_repo.get(buyer_user_id)
    if user is not None:
        invite = await invite_repo.find_current_for_email(
            edition_id=edition.id,
            email_normalized=normalize_email(user.email),
            now=now,
        )
        if invite is not None:
            raise AlreadyRegisteredError(
                "You have a pending invite for this event",
                code=ErrorCode.HAS_ACTIVE_INVITE,
            )

    tiers = await event_repo.list_pricing_tiers(distance.id)
    tier = select_current_tier(tiers, now)
    quote = quote_price(tier.price_cents if tier is not None else 0, fee_policy)

    registration = await reserve_hold(
        event_repo,
        reg_repo,
        edition_id=edition.id,
        distance_id=distance.id,
        buyer_user_id=buyer_user_id,
        status=RegistrationStatus.STARTED,
        expires_at=expiry_policy.compute_expires_at(now, RegistrationStatus.STARTED),
        quote=quote,
        now=now,
    )
    return registration, True


async def submit_registrant_info(
    reg_repo: RegistrationRepository,
    *,
    registration_id: int,
    user_id: int,
    profile: dict[str, Any],
    division: str | None,
    gender_identity: str | None,
    expiry_policy: ExpiryPolicy,
    now: datetime | None = None,
) -> Registration:
    now = now or utcnow()
    registration = await _get_owned_registration(reg_repo, registration_id, user_id)
    _ensure_hold_usable(registration, now)
    if registration.status != RegistrationStatus.STARTED:
        raise InvalidStateTransitionError("Registrant info can only be submitted once")

    await reg_repo.save_registrant(
        registration.id,
        user_id=user_id,
        profile_snapshot=profile,
        division=division,
        gender_identity=gender_identity,
    )
    updated = await reg_repo.transition(
        registration.id,
        from_statuses=(RegistrationStatus.STARTED,),
        to_status=RegistrationStatus.SUBMITTED,
        expires_at=expiry_policy.compute_expires_at(now, RegistrationStatus.SUBMITTED),
    )
    if updated is None:
        raise _state_lost(registration.id, RegistrationStatus.STARTED)
    return updated


async def accept_waiver(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    *,
    registration_id: int,
    user_id: int,
    waiver_id: int,
    signature_type: SignatureType,
    signature_value: str | None = None,
    now: datetime | None = None,
) -> WaiverAcceptance:
    now = now or utcnow()
    registration = await _get_owned_registration(reg_repo, registration_id, user_id)
    _ensure_hold_usable(registration, now)
    if registration.status not in FINALIZABLE_STATUSES:
        raise InvalidStateTransitionError("Waivers can no longer be changed for this registration")

    waiver = await event_repo.get_waiver(waiver_id)
    if waiver is None or waiver.edition_id != registration.edition_id:
        raise NotFoundError("Waiver not found")
    if signature_type != waiver.signature_type:
        raise ValidationError("Signature type does not match the waiver")
    value = (signature_value or "").strip() or None
    if signature_type != SignatureType.CHECKBOX and value is None:
        raise ValidationError("A signature value is required for this waiver")

    return await reg_repo.save_waiver_acceptance(
        registration_id=registration.id,
        waiver=waiver,
        signature_type=signature_type,
        signature_value=value,
        accepted_at=now,
    )


async def submit_answers(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    *,
    registration_id: int,
    user_id: int,
    answers: Sequence[AnswerInput],
    now: datetime | None = None,
) -> list[RegistrationAnswer]:
    """Store answers to the questions asked on this registration's distance.

    Every required question must be answered in the same submission. Answers
    to questions that do not apply are ignored.
    """
    now = now or utcnow()
    registration = await _get_owned_registration(reg_repo, registration_id, user_id)
    _ensure_hold_usable(registration, now)
    if registration.status not in FINALIZABLE_STATUSES:
        raise InvalidStateTransitionError("Answers can no longer be changed for this registration")

    questions = {q.id: q for q in await event_repo.list_questions(registration.edition_id, registration.distance_id)}
    values = {answer.question_id: (answer.value or "").strip() or None for answer in answers}
    missing = find_missing_required_question(list(questions.values()), values)
    if missing is not None:
        raise MissingPrerequisiteError(
            f"Please answer the required question: {missing.prompt}",
            code=ErrorCode.MISSING_REQUIRED_ANSWER,
        )

    saved: list[RegistrationAnswer] = []
    for question_id, value in values.items():
        question = questions.get(question_id)
        if question is None:
            continue
        if question.type == QuestionType.SINGLE_SELECT and value is not None and value not in (question.options or []):
            raise ValidationError(f"Invalid option for question: {question.prompt}")
        saved.append(
            await reg_repo.upsert_answer(
                registration_id=registration.id,
                question_id=question_id,
                value=value,
                now=now,
            )
        )
    return saved


async def finalize_registration(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    *,
    registration_id: int,
    user_id: int,
    expiry_policy: ExpiryPolicy,
    no_payment_mode: bool = False,
    now: datetime | None = None,
) -> tuple[Registration, RegistrationStatus]:
    """Move a complete hold to ``confirmed`` or ``payment_pending``.

    Returns the registration and the status it had before; finalizing a
    confirmed registration again returns it unchanged.

    Availability and capacity are checked again here: the hold may be old and
    other registrations may have filled the scope since it was taken.
    """
    now = now or utcnow()
    registration = await _get_owned_registration(reg_repo, registration_id, user_id)
    previous = registration.status
    if previous == RegistrationStatus.CONFIRMED:
        return registration, previous
    _ensure_hold_usable(registration, now)
    if registration.status not in FINALIZABLE_STATUSES:
        raise InvalidStateTransitionError("Registration cannot be finalized from its current state")

    if await reg_repo.get_registrant(registration.id) is None:
        raise MissingPrerequisiteError("Registrant information is required", code=ErrorCode.MISSING_REGISTRANT)
    waivers = await event_repo.list_waivers(registration.edition_id)
    if waivers:
        accepted = {acceptance.waiver_id for acceptance in await reg_repo.list_waiver_acceptances(registration.id)}
        if any(waiver.id not in accepted for waiver in waivers):
            raise MissingPrerequisiteError("All waivers must be accepted", code=ErrorCode.MISSING_WAIVER)
    questions = await event_repo.list_questions(registration.edition_id, registration.distance_id)
    if any(question.is_required for question in questions):
        answered = {answer.question_id: answer.value for answer in await reg_repo.list_answers(registration.id)}
        missing = find_missing_required_question(questions, answered)
        if missing is not None:
            raise MissingPrerequisiteError(
                f"Please answer the required question: {missing.prompt}",
                code=ErrorCode.MISSING_REQUIRED_ANSWER,
            )

    edition = await event_repo.lock_edition(registration.edition_id)
    if edition is None:
        raise NotFoundError("Event not found")
    ensure_registration_open(edition, now)
    await lock_and_check_capacity(
        event_repo,
        reg_repo,
        edition_id=registration.edition_id,
        distance_id=registration.distance_id,
        now=now,
        exclude_ids=(registration.id,),
    )

    if no_payment_mode or registration.payment_responsibility == PaymentResponsibility.CENTRAL_PAY:
        next_status = RegistrationStatus.CONFIRMED
        expires_at = None
    else:
        next_status = RegistrationStatus.PAYMENT_PENDING
        expires_at = expiry_policy.compute_expires_at(now, RegistrationStatus.PAYMENT_PENDING)

    updated = await reg_repo.transition(
        registration.id,
        from_statuses=FINALIZABLE_STATUSES,
        to_status=next_status,
        expires_at=expires_at,
    )
    if updated is None:
        raise _state_lost(registration.id, "started|submitted")
    return updated, previous


async def confirm_payment(
    reg_repo: RegistrationRepository,
    *,
    registration_id: int,
    now: datetime | None = None,
) -> Registration:
    """Payment collaborator callback: ``payment_pending -> confirmed``.

    Carries no actor check; only trusted callers may reach it.
    """
    now = now or utcnow()
    registration = await reg_repo.get(registration_id)
    if registration is None:
        raise NotFoundError("Registration not found")
    if registration.status == RegistrationStatus.CONFIRMED:
        return registration
    _ensure_hold_usable(registration, now)
    if registration.status != RegistrationStatus.PAYMENT_PENDING:
        raise InvalidStateTransitionError("Registration is not awaiting payment")

    updated = await reg_repo.transition(
        registration.id,
        from_statuses=(RegistrationStatus.PAYMENT_PENDING,),
        to_status=RegistrationStatus.CONFIRMED,
        expires_at=None,
    )
    if updated is None:
        raise _state_lost(registration.id, RegistrationStatus.PAYMENT_PENDING)
    return updated


async def demo_pay_registration(
    reg_repo: RegistrationRepository,
    *,
    registration_id: int,
    user_id: int,
    demo_payments_enabled: bool,
    now: datetime | None = None,
) -> tuple[Registration, RegistrationStatus]:
    """Buyer-initiated ``payment_pending -> confirmed`` for demo deployments.

    Refused unless demo payments are switched on. Returns the registration
    and the status it had before.
    """
    if not demo_payments_enabled:
        raise ForbiddenError("Demo payments are disabled", code=ErrorCode.DEMO_PAYMENTS_DISABLED)
    registration = await _get_owned_registration(reg_repo, registration_id, user_id)
    previous = registration.status
    updated = await confirm_payment(reg_repo, registration_id=registration.id, now=now)
    return updated, previous


async def cancel_registration(
    reg_repo: RegistrationRepository,
    *,
    registration_id: int,
    user_id: int,
) -> tuple[Registration, RegistrationStatus]:
    """Cancel a hold. Returns the registration and the status it had before."""
    registration = await _get_owned_registration(reg_repo, registration_id, user_id)
    previous = registration.status
    # Idempotent: already cancelled returns as-is
    if previous == RegistrationStatus.CANCELLED:
        return registration, previous
    if previous == RegistrationStatus.CONFIRMED:
        raise InvalidStateTransitionError("Confirmed registrations cannot be cancelled here")

    updated = await reg_repo.transition(
        registration.id,
        from_statuses=HOLD_STATUSES,
        to_status=RegistrationStatus.CANCELLED,
        expires_at=None,
    )
    if updated is None:
        raise _state_lost(registration.id, "started|submitted|payment_pending")
    return updated, previous
