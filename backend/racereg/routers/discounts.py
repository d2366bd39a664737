from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_user_id, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import (
    SqlAlchemyDiscountRepository,
    SqlAlchemyEventRepository,
    SqlAlchemyRegistrationRepository,
)
from ..schemas import (
    DiscountApply,
    DiscountAppliedRead,
    DiscountCodeRead,
    DiscountValidateRequest,
    DiscountValidationRead,
    RegistrationRead,
)
from ..usecases import discounts as discount_usecase
from ..utils.audit_log import emit_audit_log
from .errors import audit_failed, to_http_exception

router = APIRouter(prefix="", tags=["discounts"])


@router.post("/registrations/{registration_id}/discount", response_model=DiscountAppliedRead)
async def apply_discount_code(
    payload: DiscountApply,
    registration_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> DiscountAppliedRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    discount_repo = SqlAlchemyDiscountRepository(session)
    async with session.begin():
        try:
            registration, redemption = await discount_usecase.apply_discount_code(
                discount_repo,
                reg_repo,
                registration_id=registration_id,
                user_id=user_id,
                code=payload.code,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc

        edition = await event_repo.get_edition(registration.edition_id)
        try:
            emit_audit_log(
                action="discount_code.apply",
                initiator="user",
                entity_type="registration",
                entity_id=registration.id,
                actor_user_id=user_id,
                organization_id=edition.organization_id if edition is not None else None,
                after={
                    "discount_code_id": redemption.discount_code_id,
                    "discount_amount_cents": redemption.discount_amount_cents,
                    "total_cents": registration.total_cents,
                },
            )
        except RuntimeError as exc:
            raise audit_failed() from exc

    return DiscountAppliedRead(
        registration=RegistrationRead.from_db(registration=registration),
        discount_amount_cents=redemption.discount_amount_cents,
    )


@router.delete("/registrations/{registration_id}/discount", response_model=RegistrationRead)
async def remove_discount_code(
    registration_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> RegistrationRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    discount_repo = SqlAlchemyDiscountRepository(session)
    async with session.begin():
        try:
            registration, redemption = await discount_usecase.remove_discount_code(
                discount_repo,
                reg_repo,
                registration_id=registration_id,
                user_id=user_id,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc

        edition = await event_repo.get_edition(registration.edition_id)
        try:
            emit_audit_log(
                action="discount_code.remove",
                initiator="user",
                entity_type="registration",
                entity_id=registration.id,
                actor_user_id=user_id,
                organization_id=edition.organization_id if edition is not None else None,
                before={
                    "discount_code_id": redemption.discount_code_id,
                    "discount_amount_cents": redemption.discount_amount_cents,
                },
                after={"total_cents": registration.total_cents},
            )
        except RuntimeError as exc:
            raise audit_failed() from exc

    return RegistrationRead.from_db(registration=registration)


@router.post("/editions/{edition_id}/discount-codes/validate", response_model=DiscountValidationRead)
async def validate_discount_code(
    payload: DiscountValidateRequest,
    edition_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> DiscountValidationRead:
    discount_repo = SqlAlchemyDiscountRepository(session)
    try:
        result = await discount_usecase.validate_discount_code(
            discount_repo,
            edition_id=edition_id,
            code=payload.code,
            base_price_cents=payload.base_price_cents,
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc
    return DiscountValidationRead(
        discount_code=DiscountCodeRead.from_db(code=result.code, current_redemptions=result.active_redemptions),
        discount_amount_cents=result.discount_amount_cents,
    )


@router.get("/editions/{edition_id}/discount-codes", response_model=list[DiscountCodeRead])
async def list_discount_codes(
    edition_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[DiscountCodeRead]:
    discount_repo = SqlAlchemyDiscountRepository(session)
    rows = await discount_usecase.list_discount_codes(discount_repo, edition_id=edition_id)
    return [DiscountCodeRead.from_db(code=code, current_redemptions=count) for code, count in rows]
