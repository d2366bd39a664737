from __future__ import annotations

from datetime import date, datetime

from ..domain.errors import AlreadyRegisteredError, ErrorCode, InviteError, NotFoundError
from ..domain.expiry import is_expired_hold
from ..domain.repositories import InviteRepository, RegistrationRepository, UserRepository
from ..domain.services import normalize_email
from ..models import InviteStatus, Registration, RegistrationInvite
from ..utils.auth import hash_invite_token
from ..utils.time import utcnow


async def claim_invite(
    invite_repo: InviteRepository,
    reg_repo: RegistrationRepository,
    user_repo: UserRepository,
    *,
    token: str,
    user_id: int,
    date_of_birth: date | None = None,
    now: datetime | None = None,
) -> tuple[RegistrationInvite, Registration]:
    """Attach an invite-held registration to the signed-in participant.

    ``date_of_birth`` is only consulted when the user's profile has none; it
    must then match the invite and is stored on the profile.
    """
    now = now or utcnow()

    invite = await invite_repo.get_by_token_hash_for_update(hash_invite_token(token))
    if invite is None:
        raise NotFoundError("Invite not found")

    if invite.status == InviteStatus.CLAIMED:
        if invite.claimed_by_user_id == user_id:
            registration = await reg_repo.get(invite.registration_id)
            if registration is None:
                raise NotFoundError("Registration not found")
            return invite, registration
        raise InviteError("Invite already claimed", code=ErrorCode.ALREADY_CLAIMED)
    if invite.status == InviteStatus.CANCELLED:
        raise InviteError("Invite cancelled", code=ErrorCode.INVITE_CANCELLED)
    if invite.status == InviteStatus.EXPIRED:
        raise InviteError("Invite expired", code=ErrorCode.INVITE_EXPIRED)
    if not invite.is_current or invite.status not in (InviteStatus.DRAFT, InviteStatus.SENT):
        raise InviteError("Invite is not active", code=ErrorCode.INVITE_INVALID)

    registration = await reg_repo.get_for_update(invite.registration_id)
    if registration is None or is_expired_hold(registration.status, registration.expires_at, now):
        raise InviteError("Invite expired", code=ErrorCode.INVITE_EXPIRED)
    if registration.buyer_user_id is not None and registration.buyer_user_id != user_id:
        raise InviteError("Invite already claimed", code=ErrorCode.ALREADY_CLAIMED)

    user = await user_repo.get(user_id)
    if user is None:
        raise NotFoundError("User not found")
    if normalize_email(user.email) != invite.email_normalized:
        raise InviteError("Email mismatch", code=ErrorCode.EMAIL_MISMATCH)

    if user.date_of_birth is not None:
        if user.date_of_birth != invite.date_of_birth:
            raise InviteError("Date of birth mismatch", code=ErrorCode.DOB_MISMATCH)
    else:
        if date_of_birth is None:
            raise InviteError("Date of birth required", code=ErrorCode.DOB_REQUIRED)
        if date_of_birth != invite.date_of_birth:
            raise InviteError("Date of birth mismatch", code=ErrorCode.DOB_MISMATCH)
        await user_repo.set_date_of_birth(user, invite.date_of_birth)

    existing = await reg_repo.find_active_in_edition(buyer_user_id=user_id, edition_id=invite.edition_id, now=now)
    if existing is not None and existing.id != registration.id:
        raise AlreadyRegisteredError("Already registered")

    if not await reg_repo.set_buyer_if_unclaimed(registration.id, user_id):
        raise InviteError("Invite already claimed", code=ErrorCode.ALREADY_CLAIMED)
    await reg_repo.attach_registrant_user(registration.id, user_id)
    invite = await invite_repo.mark_claimed(invite, user_id=user_id, now=now)

    claimed = await reg_repo.get(registration.id)
    return invite, claimed or registration
