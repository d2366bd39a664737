"""Hold lifetime rules.

``is_expired_hold`` is the single answer to "does this registration still
occupy a capacity spot, and may its buyer still act on it". A hold whose
stored status is still ``started`` reads as expired once ``expires_at``
passes; no sweep is needed for that to hold.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from ..models import HOLD_STATUSES, RegistrationStatus


@dataclass(frozen=True)
class HoldTtlConfig:
    started_minutes: int = 30
    submitted_minutes: int = 30
    payment_pending_hours: int = 24

    def __post_init__(self) -> None:
        if min(self.started_minutes, self.submitted_minutes, self.payment_pending_hours) <= 0:
            raise ValueError("hold TTLs must be positive")


def is_expired_hold(status: str, expires_at: datetime | None, now: datetime) -> bool:
    if status == RegistrationStatus.CANCELLED:
        return True
    if status == RegistrationStatus.CONFIRMED:
        return False
    if status in HOLD_STATUSES:
        return expires_at is None or expires_at <= now
    # Unknown statuses never hold a spot.
    return True


class ExpiryPolicy:
    def __init__(self, config: HoldTtlConfig | None = None) -> None:
        self.config = config or HoldTtlConfig()

    def ttl_for(self, status: RegistrationStatus) -> timedelta | None:
        if status == RegistrationStatus.STARTED:
            return timedelta(minutes=self.config.started_minutes)
        if status == RegistrationStatus.SUBMITTED:
            return timedelta(minutes=self.config.submitted_minutes)
        if status == RegistrationStatus.PAYMENT_PENDING:
            return timedelta(hours=self.config.payment_pending_hours)
        return None

    def compute_expires_at(self, now: datetime, status: RegistrationStatus) -> datetime:
        ttl = self.ttl_for(status)
        if ttl is None:
            raise ValueError(f"status {status} has no hold TTL")
        return now + ttl

    def is_expired_hold(self, status: str, expires_at: datetime | None, now: datetime) -> bool:
        return is_expired_hold(status, expires_at, now)
