from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_user_id, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import (
    SqlAlchemyEventRepository,
    SqlAlchemyInviteRepository,
    SqlAlchemyRegistrationRepository,
    SqlAlchemyUserRepository,
)
from ..schemas import InviteClaim, InviteClaimRead, RegistrationRead
from ..usecases import invites as invite_usecase
from ..utils.audit_log import emit_audit_log
from .errors import audit_failed, to_http_exception

router = APIRouter(prefix="/invites", tags=["invites"])


@router.post("/claim", response_model=InviteClaimRead)
async def claim_invite(
    payload: InviteClaim,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> InviteClaimRead:
    event_repo = SqlAlchemyEventRepository(session)
    invite_repo = SqlAlchemyInviteRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    user_repo = SqlAlchemyUserRepository(session)
    async with session.begin():
        try:
            invite, registration = await invite_usecase.claim_invite(
                invite_repo,
                reg_repo,
                user_repo,
                token=payload.token,
                user_id=user_id,
                date_of_birth=payload.date_of_birth,
            )
        except DomainError as exc:
            raise to_http_exception(exc) from exc

        edition = await event_repo.get_edition(registration.edition_id)
        try:
            emit_audit_log(
                action="registration_invite.claim",
                initiator="user",
                entity_type="registration_invite",
                entity_id=invite.id,
                actor_user_id=user_id,
                organization_id=edition.organization_id if edition is not None else None,
                after={"registration_id": registration.id, "status": invite.status},
            )
        except RuntimeError as exc:
            raise audit_failed() from exc

    return InviteClaimRead(
        invite_id=invite.id,
        registration=RegistrationRead.from_db(registration=registration),
    )
