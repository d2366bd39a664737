from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..domain.repositories import InviteRepository, RegistrationRepository
from ..utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupResult:
    # (registration_id, edition_id) per cancelled hold
    cancelled: list[tuple[int, int]]
    expired_invites: int

    @property
    def cancelled_registration_ids(self) -> list[int]:
        return [registration_id for registration_id, _ in self.cancelled]


async def cleanup_expired_registrations(
    reg_repo: RegistrationRepository,
    invite_repo: InviteRepository,
    *,
    now: datetime | None = None,
) -> CleanupResult:
    """Store ``cancelled`` on holds whose TTL has lapsed.

    Capacity and discount counts already ignore these rows; this only makes
    the stored status agree for reporting.
    """
    now = now or utcnow()
    cancelled = await reg_repo.expire_holds(now)
    ids = [registration_id for registration_id, _ in cancelled]
    expired_invites = await invite_repo.expire_for_registrations(ids) if ids else 0
    if ids:
        logger.info("cancelled %s expired holds, expired %s invites", len(ids), expired_invites)
    return CleanupResult(cancelled=cancelled, expired_invites=expired_invites)
