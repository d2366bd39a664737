from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_user_id, get_session
from ..infrastructure.repositories import (
    SqlAlchemyEventRepository,
    SqlAlchemyInviteRepository,
    SqlAlchemyRegistrationRepository,
)
from ..schemas import CleanupRead
from ..usecases import maintenance as maintenance_usecase
from ..utils.audit_log import emit_audit_log
from .errors import audit_failed

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("/expired-registrations/cleanup", response_model=CleanupRead)
async def cleanup_expired_registrations(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> CleanupRead:
    event_repo = SqlAlchemyEventRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    invite_repo = SqlAlchemyInviteRepository(session)
    async with session.begin():
        result = await maintenance_usecase.cleanup_expired_registrations(reg_repo, invite_repo)
        organizations: dict[int, int | None] = {}
        for _, edition_id in result.cancelled:
            if edition_id not in organizations:
                edition = await event_repo.get_edition(edition_id)
                organizations[edition_id] = edition.organization_id if edition is not None else None
        try:
            for registration_id, edition_id in result.cancelled:
                emit_audit_log(
                    action="registration.expire",
                    initiator="system",
                    entity_type="registration",
                    entity_id=registration_id,
                    actor_user_id=user_id,
                    organization_id=organizations[edition_id],
                    after={"status": "cancelled"},
                )
        except RuntimeError as exc:
            raise audit_failed() from exc

    return CleanupRead(
        cancelled=len(result.cancelled),
        expired_invites=result.expired_invites,
    )
