from typing import Optional

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_user_id, get_fee_policy, get_session
from ..domain.errors import DomainError
from ..domain.pricing import FeePolicy
from ..infrastructure.repositories import (
    SqlAlchemyEventRepository,
    SqlAlchemyGroupBatchRepository,
    SqlAlchemyInviteRepository,
    SqlAlchemyRegistrationRepository,
    SqlAlchemyUserRepository,
)
from ..schemas import (
    BatchReserveRead,
    BatchReserveRequest,
    BatchRowRead,
    IssuedInviteRead,
    RosterUpload,
    RosterUploadRead,
)
from ..usecases import group_uploads as group_upload_usecase
from ..utils.audit_log import emit_audit_log
from .errors import audit_failed, to_http_exception

router = APIRouter(prefix="/group-batches", tags=["group-uploads"])


@router.post("/{batch_id}/rows", response_model=RosterUploadRead)
async def upload_roster(
    payload: RosterUpload,
    batch_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> RosterUploadRead:
    event_repo = SqlAlchemyEventRepository(session)
    batch_repo = SqlAlchemyGroupBatchRepository(session)
    user_repo = SqlAlchemyUserRepository(session)
    async with session.begin():
        try:
            batch, rows = await group_upload_usecase.upload_roster(
                batch_repo,
                user_repo,
                batch_id=batch_id,
                user_id=user_id,
                csv_text=payload.csv_text,
                max_rows=get_settings().group_upload_max_rows,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc

        error_count = sum(1 for row in rows if row.validation_errors)
        edition = await event_repo.get_edition(batch.edition_id)
        try:
            emit_audit_log(
                action="group_batch.rows_upload",
                initiator="organizer",
                entity_type="group_registration_batch",
                entity_id=batch.id,
                actor_user_id=user_id,
                organization_id=edition.organization_id if edition is not None else None,
                after={"row_count": len(rows), "error_count": error_count},
            )
        except RuntimeError as exc:
            raise audit_failed() from exc

    return RosterUploadRead(
        batch_id=batch.id,
        status=batch.status,
        error_count=error_count,
        rows=[BatchRowRead.from_db(row=row) for row in rows],
    )


@router.post("/{batch_id}/reserve", response_model=BatchReserveRead)
async def reserve_batch(
    batch_id: int = Path(..., ge=1),
    payload: Optional[BatchReserveRequest] = None,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    fee_policy: FeePolicy = Depends(get_fee_policy),
) -> BatchReserveRead:
    settings = get_settings()
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    user_repo = SqlAlchemyUserRepository(session)
    invite_repo = SqlAlchemyInviteRepository(session)
    batch_repo = SqlAlchemyGroupBatchRepository(session)
    async with session.begin():
        try:
            result = await group_upload_usecase.reserve_invites_for_batch(
                event_repo,
                reg_repo,
                user_repo,
                invite_repo,
                batch_repo,
                batch_id=batch_id,
                user_id=user_id,
                limit=(payload.limit if payload is not None else None) or settings.group_upload_reserve_chunk_size,
                invite_hold_hours=settings.invite_hold_hours,
                fee_policy=fee_policy,
                row_transaction=session.begin_nested,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc

        batch = await batch_repo.get_batch(batch_id)
        edition = await event_repo.get_edition(batch.edition_id) if batch is not None else None
        try:
            emit_audit_log(
                action="group_batch.reserve",
                initiator="organizer",
                entity_type="group_registration_batch",
                entity_id=batch_id,
                actor_user_id=user_id,
                organization_id=edition.organization_id if edition is not None else None,
                after={
                    "processed": result.processed,
                    "succeeded": result.succeeded,
                    "failed": result.failed,
                    "remaining": result.remaining,
                    "group_discount_percent_off": result.group_discount_percent_off,
                    "registration_ids": [invite.registration_id for invite in result.invites],
                },
            )
        except RuntimeError as exc:
            raise audit_failed() from exc

    return BatchReserveRead(
        batch_id=batch_id,
        processed=result.processed,
        succeeded=result.succeeded,
        failed=result.failed,
        remaining=result.remaining,
        group_discount_percent_off=result.group_discount_percent_off,
        invites=[
            IssuedInviteRead(
                row_index=invite.row_index,
                email=invite.email,
                registration_id=invite.registration_id,
                token=invite.token,
            )
            for invite in result.invites
        ],
    )
