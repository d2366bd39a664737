from typing import Any

from fastapi import APIRouter, Depends, Path, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_user_id, get_expiry_policy, get_fee_policy, get_session
from ..domain.errors import DomainError
from ..domain.expiry import ExpiryPolicy
from ..domain.pricing import FeePolicy
from ..infrastructure.repositories import (
    SqlAlchemyDiscountRepository,
    SqlAlchemyEventRepository,
    SqlAlchemyInviteRepository,
    SqlAlchemyRegistrationRepository,
    SqlAlchemyUserRepository,
)
from ..models import Registration
from ..schemas import (
    AddOnSelectionRead,
    AddOnsRead,
    AddOnSubmit,
    AnswerRead,
    AnswersSubmit,
    RegistrantSubmit,
    RegistrationRead,
    WaiverAccept,
    WaiverAcceptanceRead,
)
from ..usecases import pricing as pricing_usecase
from ..usecases import registrations as registration_usecase
from ..utils.audit_log import AuditAction, emit_audit_log
from .errors import audit_failed, to_http_exception

router = APIRouter(prefix="", tags=["registrations"])


def _snapshot(registration: Registration) -> dict[str, Any]:
    return {
        "status": registration.status,
        "expires_at": registration.expires_at,
        "total_cents": registration.total_cents,
    }


async def _audit(
    event_repo: SqlAlchemyEventRepository,
    registration: Registration,
    *,
    action: AuditAction,
    actor_user_id: int | None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> None:
    edition = await event_repo.get_edition(registration.edition_id)
    try:
        emit_audit_log(
            action=action,
            initiator="user",
            entity_type="registration",
            entity_id=registration.id,
            actor_user_id=actor_user_id,
            organization_id=edition.organization_id if edition is not None else None,
            before=before,
            after=after if after is not None else _snapshot(registration),
        )
    except RuntimeError as exc:
        raise audit_failed() from exc


@router.post(
    "/distances/{distance_id}/registrations",
    response_model=RegistrationRead,
    status_code=status.HTTP_201_CREATED,
)
async def start_registration(
    response: Response,
    distance_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    expiry_policy: ExpiryPolicy = Depends(get_expiry_policy),
    fee_policy: FeePolicy = Depends(get_fee_policy),
) -> RegistrationRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    user_repo = SqlAlchemyUserRepository(session)
    invite_repo = SqlAlchemyInviteRepository(session)
    async with session.begin():
        try:
            registration, created = await registration_usecase.start_registration(
                event_repo,
                reg_repo,
                user_repo,
                invite_repo,
                distance_id=distance_id,
                buyer_user_id=user_id,
                expiry_policy=expiry_policy,
                fee_policy=fee_policy,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc
        if created:
            await _audit(
                event_repo,
                registration,
                action="registration.start",
                actor_user_id=user_id,
                after={**_snapshot(registration), "distance_id": registration.distance_id},
            )

    if not created:
        response.status_code = status.HTTP_200_OK
    return RegistrationRead.from_db(registration=registration)


@router.post("/registrations/{registration_id}/registrant", response_model=RegistrationRead)
async def submit_registrant_info(
    payload: RegistrantSubmit,
    registration_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    expiry_policy: ExpiryPolicy = Depends(get_expiry_policy),
) -> RegistrationRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    async with session.begin():
        try:
            registration = await registration_usecase.submit_registrant_info(
                reg_repo,
                registration_id=registration_id,
                user_id=user_id,
                profile=payload.profile,
                division=payload.division,
                gender_identity=payload.gender_identity,
                expiry_policy=expiry_policy,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc
        await _audit(
            event_repo,
            registration,
            action="registration.submit_info",
            actor_user_id=user_id,
            before={"status": "started"},
        )

    return RegistrationRead.from_db(registration=registration)


@router.post("/registrations/{registration_id}/waivers", response_model=WaiverAcceptanceRead)
async def accept_waiver(
    payload: WaiverAccept,
    registration_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> WaiverAcceptanceRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    async with session.begin():
        try:
            acceptance = await registration_usecase.accept_waiver(
                event_repo,
                reg_repo,
                registration_id=registration_id,
                user_id=user_id,
                waiver_id=payload.waiver_id,
                signature_type=payload.signature_type,
                signature_value=payload.signature_value,
            )
            registration = await reg_repo.get(registration_id)
        except DomainError as exc:
            raise to_http_exception(exc) from exc
        if registration is not None:
            await _audit(
                event_repo,
                registration,
                action="registration.waiver_accept",
                actor_user_id=user_id,
                after={"waiver_id": acceptance.waiver_id, "version_hash": acceptance.waiver_version_hash},
            )

    return WaiverAcceptanceRead.from_db(acceptance=acceptance)


@router.post("/registrations/{registration_id}/answers", response_model=list[AnswerRead])
async def submit_answers(
    payload: AnswersSubmit,
    registration_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[AnswerRead]:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    async with session.begin():
        try:
            answers = await registration_usecase.submit_answers(
                event_repo,
                reg_repo,
                registration_id=registration_id,
                user_id=user_id,
                answers=[
                    registration_usecase.AnswerInput(question_id=item.question_id, value=item.value)
                    for item in payload.answers
                ],
            )
            registration = await reg_repo.get(registration_id)
        except DomainError as exc:
            raise to_http_exception(exc) from exc
        if registration is not None:
            await _audit(
                event_repo,
                registration,
                action="registration.answers_submit",
                actor_user_id=user_id,
                after={"answer_count": len(answers)},
            )

    return [AnswerRead.from_db(answer=answer) for answer in answers]


@router.post("/registrations/{registration_id}/add-ons", response_model=AddOnsRead)
async def submit_add_ons(
    payload: AddOnSubmit,
    registration_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> AddOnsRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    discount_repo = SqlAlchemyDiscountRepository(session)
    async with session.begin():
        try:
            registration, selections = await pricing_usecase.submit_add_on_selections(
                event_repo,
                reg_repo,
                discount_repo,
                registration_id=registration_id,
                user_id=user_id,
                choices=[
                    pricing_usecase.AddOnChoice(option_id=item.option_id, quantity=item.quantity)
                    for item in payload.selections
                ],
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc
        await _audit(
            event_repo,
            registration,
            action="registration.add_ons_update",
            actor_user_id=user_id,
            after={
                "total_cents": registration.total_cents,
                "selections": [{"option_id": s.option_id, "quantity": s.quantity} for s in selections],
            },
        )

    return AddOnsRead(
        registration=RegistrationRead.from_db(registration=registration),
        selections=[AddOnSelectionRead.from_db(selection=s) for s in selections],
    )


@router.post("/registrations/{registration_id}/finalize", response_model=RegistrationRead)
async def finalize_registration(
    registration_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    expiry_policy: ExpiryPolicy = Depends(get_expiry_policy),
) -> RegistrationRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    async with session.begin():
        try:
            registration, previous = await registration_usecase.finalize_registration(
                event_repo,
                reg_repo,
                registration_id=registration_id,
                user_id=user_id,
                expiry_policy=expiry_policy,
                no_payment_mode=get_settings().no_payment_mode,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc
        if previous != registration.status:
            await _audit(
                event_repo,
                registration,
                action="registration.finalize",
                actor_user_id=user_id,
                before={"status": previous},
            )

    return RegistrationRead.from_db(registration=registration)


@router.post("/registrations/{registration_id}/demo-payment", response_model=RegistrationRead)
async def demo_pay_registration(
    registration_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> RegistrationRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    async with session.begin():
        try:
            registration, previous = await registration_usecase.demo_pay_registration(
                reg_repo,
                registration_id=registration_id,
                user_id=user_id,
                demo_payments_enabled=get_settings().demo_payments,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc
        if previous != registration.status:
            await _audit(
                event_repo,
                registration,
                action="registration.demo_pay",
                actor_user_id=user_id,
                before={"status": previous},
                after={**_snapshot(registration), "mode": "demo"},
            )

    return RegistrationRead.from_db(registration=registration)


@router.post("/registrations/{registration_id}/cancel", response_model=RegistrationRead)
async def cancel_registration(
    registration_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> RegistrationRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    async with session.begin():
        try:
            registration, previous = await registration_usecase.cancel_registration(
                reg_repo,
                registration_id=registration_id,
                user_id=user_id,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc
        if previous != registration.status:
            await _audit(
                event_repo,
                registration,
                action="registration.cancel",
                actor_user_id=user_id,
                before={"status": previous},
            )

    return RegistrationRead.from_db(registration=registration)
