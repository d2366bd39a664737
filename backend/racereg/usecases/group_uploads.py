"""Group roster upload and bulk invite reservation.

A coordinator uploads a CSV roster into a batch, then reserves it in chunks.
Every valid row becomes a buyer-less hold plus a draft invite whose token the
participant later uses to claim the hold. Rows fail independently; a sold-out
row does not stop the rest of the chunk.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import Any, Callable, Sequence

from ..domain.errors import (
    AlreadyRegisteredError,
    DomainError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from ..domain.pricing import FeePolicy, percent_of, quote_price, select_current_tier
from ..domain.repositories import (
    EventRepository,
    GroupBatchRepository,
    InviteRepository,
    RegistrationRepository,
    UserRepository,
)
from ..domain.services import ensure_registration_open, normalize_email, select_group_discount_rule
from ..models import (
    BatchStatus,
    EventDistance,
    EventEdition,
    GroupRegistrationBatch,
    GroupRegistrationBatchRow,
    RegistrationStatus,
    User,
)
from ..utils.auth import generate_invite_token, hash_invite_token
from ..utils.time import utcnow
from .holds import reserve_hold

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = ("firstName", "lastName", "email", "dateOfBirth")
OPTIONAL_HEADERS = (
    "phone",
    "gender",
    "genderIdentity",
    "city",
    "state",
    "country",
    "emergencyContactName",
    "emergencyContactPhone",
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

RowTransaction = Callable[[], AbstractAsyncContextManager[Any]]


class RowError(StrEnum):
    MISSING_FIRST_NAME = "MISSING_FIRST_NAME"
    MISSING_LAST_NAME = "MISSING_LAST_NAME"
    MISSING_EMAIL = "MISSING_EMAIL"
    INVALID_EMAIL = "INVALID_EMAIL"
    INVALID_DOB = "INVALID_DOB"
    DUPLICATE_EMAIL_IN_FILE = "DUPLICATE_EMAIL_IN_FILE"
    DOB_MISMATCH = "DOB_MISMATCH"
    INVALID_ROW = "INVALID_ROW"


@dataclass(frozen=True)
class IssuedInvite:
    row_index: int
    email: str
    registration_id: int
    token: str


@dataclass
class BatchReservationResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    remaining: int = 0
    group_discount_percent_off: int | None = None
    invites: list[IssuedInvite] = field(default_factory=list)


def parse_iso_date(value: Any) -> date | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not _ISO_DATE_RE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def parse_roster_csv(text: str, *, max_rows: int) -> list[tuple[int, dict[str, str]]]:
    """Parse roster CSV into ``(row_index, cells)`` pairs.

    ``row_index`` is the 1-based line number in the file, so the first data
    row is 2. Blank lines are skipped.
    """
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    try:
        header = next(reader)
    except StopIteration:
        raise ValidationError("The roster file is empty")

    columns: dict[str, int] = {}
    for position, name in enumerate(header):
        key = name.strip()
        if key and key not in columns:
            columns[key] = position
    missing = [name for name in REQUIRED_HEADERS if name not in columns]
    if missing:
        raise ValidationError(f"Missing required columns: {', '.join(missing)}")

    rows: list[tuple[int, dict[str, str]]] = []
    for line_number, cells in enumerate(reader, start=2):
        if not any(cell.strip() for cell in cells):
            continue
        rows.append(
            (
                line_number,
                {
                    name: cells[position] if position < len(cells) else ""
                    for name, position in columns.items()
                    if name in REQUIRED_HEADERS or name in OPTIONAL_HEADERS
                },
            )
        )
    if not rows:
        raise ValidationError("The roster file has no data rows")
    if len(rows) > max_rows:
        raise ValidationError(f"File exceeds maximum of {max_rows} rows")
    return rows


def validate_roster_rows(
    rows: Sequence[tuple[int, dict[str, str]]],
    users_by_email: dict[str, User],
) -> list[tuple[int, dict[str, Any], list[str]]]:
    """Attach field-level error codes to each parsed row."""
    email_counts: dict[str, int] = {}
    for _, cells in rows:
        normalized = normalize_email(cells.get("email"))
        if normalized:
            email_counts[normalized] = email_counts.get(normalized, 0) + 1

    validated: list[tuple[int, dict[str, Any], list[str]]] = []
    for row_index, cells in rows:
        first_name = cells.get("firstName", "").strip()
        last_name = cells.get("lastName", "").strip()
        email_raw = cells.get("email", "").strip()
        email_normalized = normalize_email(email_raw)
        date_of_birth = parse_iso_date(cells.get("dateOfBirth"))

        errors: list[str] = []
        if not first_name:
            errors.append(RowError.MISSING_FIRST_NAME)
        if not last_name:
            errors.append(RowError.MISSING_LAST_NAME)
        if not email_normalized:
            errors.append(RowError.MISSING_EMAIL)
        elif not _EMAIL_RE.match(email_normalized):
            errors.append(RowError.INVALID_EMAIL)
        if date_of_birth is None:
            errors.append(RowError.INVALID_DOB)
        if email_normalized and email_counts.get(email_normalized, 0) > 1:
            errors.append(RowError.DUPLICATE_EMAIL_IN_FILE)
        if email_normalized and date_of_birth is not None:
            match = users_by_email.get(email_normalized)
            if match is not None and match.date_of_birth is not None and match.date_of_birth != date_of_birth:
                errors.append(RowError.DOB_MISMATCH)

        raw: dict[str, Any] = {
            "firstName": first_name,
            "lastName": last_name,
            "email": email_raw,
            "emailNormalized": email_normalized,
            "dateOfBirth": date_of_birth.isoformat() if date_of_birth is not None else None,
        }
        for name in OPTIONAL_HEADERS:
            raw[name] = cells.get(name, "").strip() or None
        validated.append((row_index, raw, [str(code) for code in errors]))
    return validated


async def _get_coordinator_batch(
    batch_repo: GroupBatchRepository,
    *,
    batch_id: int,
    user_id: int,
) -> GroupRegistrationBatch:
    batch = await batch_repo.get_batch(batch_id)
    if batch is None:
        raise NotFoundError("Batch not found")
    if batch.created_by_user_id != user_id:
        raise ForbiddenError("Permission denied")
    return batch


async def _users_by_email(user_repo: UserRepository, emails: Sequence[str]) -> dict[str, User]:
    users = await user_repo.list_by_emails(sorted(set(email for email in emails if email)))
    return {normalize_email(user.email): user for user in users}


async def upload_roster(
    batch_repo: GroupBatchRepository,
    user_repo: UserRepository,
    *,
    batch_id: int,
    user_id: int,
    csv_text: str,
    max_rows: int,
) -> tuple[GroupRegistrationBatch, list[GroupRegistrationBatchRow]]:
    batch = await _get_coordinator_batch(batch_repo, batch_id=batch_id, user_id=user_id)
    if batch.status == BatchStatus.PROCESSED or await batch_repo.list_reserved_registration_ids(batch.id):
        raise ValidationError("This batch already has reservations and cannot be re-uploaded")

    parsed = parse_roster_csv(csv_text, max_rows=max_rows)
    users_by_email = await _users_by_email(user_repo, [normalize_email(cells.get("email")) for _, cells in parsed])
    rows = await batch_repo.replace_rows(batch, validate_roster_rows(parsed, users_by_email))
    return batch, rows


async def _reserve_row(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    invite_repo: InviteRepository,
    batch_repo: GroupBatchRepository,
    *,
    batch: GroupRegistrationBatch,
    edition: EventEdition,
    distance: EventDistance,
    row: GroupRegistrationBatchRow,
    email_normalized: str,
    date_of_birth: date,
    matched_user: User | None,
    fee_policy: FeePolicy,
    base_price_cents: int,
    expires_at: datetime,
    now: datetime,
) -> IssuedInvite:
    existing_invite = await invite_repo.find_current_for_email(
        edition_id=edition.id,
        email_normalized=email_normalized,
        now=now,
    )
    if existing_invite is not None:
        raise AlreadyRegisteredError("Invite already exists", code=ErrorCode.EXISTING_ACTIVE_INVITE)
    if matched_user is not None:
        existing = await reg_repo.find_active_in_edition(
            buyer_user_id=matched_user.id,
            edition_id=edition.id,
            now=now,
        )
        if existing is not None:
            raise AlreadyRegisteredError("Participant already registered")

    raw = row.raw_json
    snapshot = {key: raw.get(key) for key in ("firstName", "lastName", "email", *OPTIONAL_HEADERS)}
    snapshot["dateOfBirth"] = date_of_birth.isoformat()
    registration = await reserve_hold(
        event_repo,
        reg_repo,
        edition_id=edition.id,
        distance_id=distance.id,
        buyer_user_id=None,
        status=RegistrationStatus.STARTED,
        expires_at=expires_at,
        quote=quote_price(base_price_cents, fee_policy),
        now=now,
        payment_responsibility=batch.payment_responsibility,
        registrant_snapshot=snapshot,
    )

    token = generate_invite_token()
    await invite_repo.create(
        edition_id=edition.id,
        batch_id=batch.id,
        batch_row_id=row.id,
        registration_id=registration.id,
        created_by_user_id=batch.created_by_user_id,
        email=str(raw.get("email") or email_normalized),
        email_normalized=email_normalized,
        date_of_birth=date_of_birth,
        token_hash=hash_invite_token(token),
        expires_at=registration.expires_at or expires_at,
        now=now,
    )
    await batch_repo.mark_row_reserved(row, registration.id)
    return IssuedInvite(
        row_index=row.row_index,
        email=str(raw.get("email") or email_normalized),
        registration_id=registration.id,
        token=token,
    )


async def apply_group_discount_once(
    batch_repo: GroupBatchRepository,
    reg_repo: RegistrationRepository,
    *,
    batch: GroupRegistrationBatch,
    now: datetime,
) -> int | None:
    """Mark the batch processed and discount its holds, at most once.

    The processed flag is flipped with a guarded update; only the caller that
    wins it applies the discount.
    """
    if not await batch_repo.mark_processed_once(batch.id, now):
        return None

    registration_ids = await batch_repo.list_reserved_registration_ids(batch.id)
    if not registration_ids:
        return None
    rule = select_group_discount_rule(
        await batch_repo.list_active_discount_rules(batch.edition_id),
        len(registration_ids),
    )
    if rule is None:
        return None

    for registration in await reg_repo.list_by_ids(registration_ids):
        if registration.status == RegistrationStatus.CANCELLED:
            continue
        discount = percent_of(registration.base_price_cents, rule.percent_off)
        if discount <= 0:
            continue
        await reg_repo.update_amounts(
            registration,
            base_price_cents=max(registration.base_price_cents - discount, 0),
            total_cents=max(registration.total_cents - discount, 0),
        )
    logger.info("batch %s: %s%% group discount on %s holds", batch.id, rule.percent_off, len(registration_ids))
    return rule.percent_off


async def reserve_invites_for_batch(
    event_repo: EventRepository,
    reg_repo: RegistrationRepository,
    user_repo: UserRepository,
    invite_repo: InviteRepository,
    batch_repo: GroupBatchRepository,
    *,
    batch_id: int,
    user_id: int,
    limit: int,
    invite_hold_hours: int,
    fee_policy: FeePolicy,
    row_transaction: RowTransaction,
    now: datetime | None = None,
) -> BatchReservationResult:
    """Reserve up to ``limit`` pending rows of a batch.

    ``row_transaction`` opens an isolated unit (a savepoint in production) so a
    failed row leaves no partial state behind.
    """
    now = now or utcnow()
    if limit < 1:
        raise ValidationError("limit must be >= 1")
    batch = await _get_coordinator_batch(batch_repo, batch_id=batch_id, user_id=user_id)
    if batch.status == BatchStatus.PENDING:
        raise ValidationError("Upload a roster before reserving")
    if batch.distance_id is None:
        raise ValidationError("Batch has no distance selected")

    edition = await event_repo.get_edition(batch.edition_id)
    distance = await event_repo.get_distance(batch.distance_id)
    if edition is None or distance is None or distance.edition_id != edition.id:
        raise NotFoundError("Event not found")
    ensure_registration_open(edition, now)

    tier = select_current_tier(await event_repo.list_pricing_tiers(distance.id), now)
    base_price_cents = tier.price_cents if tier is not None else 0
    expires_at = now + timedelta(hours=invite_hold_hours)

    rows = await batch_repo.list_pending_rows(batch.id, limit=limit)
    users_by_email = await _users_by_email(
        user_repo,
        [str(row.raw_json.get("emailNormalized") or normalize_email(row.raw_json.get("email"))) for row in rows],
    )

    result = BatchReservationResult()
    for row in rows:
        result.processed += 1
        raw = row.raw_json
        email_normalized = str(raw.get("emailNormalized") or normalize_email(raw.get("email")))
        date_of_birth = parse_iso_date(raw.get("dateOfBirth"))
        if not email_normalized or date_of_birth is None:
            await batch_repo.mark_row_failed(row, str(RowError.INVALID_ROW))
            result.failed += 1
            continue

        matched_user = users_by_email.get(email_normalized)
        if matched_user is not None and matched_user.date_of_birth not in (None, date_of_birth):
            await batch_repo.mark_row_failed(row, str(RowError.DOB_MISMATCH))
            result.failed += 1
            continue

        try:
            async with row_transaction():
                issued = await _reserve_row(
                    event_repo,
                    reg_repo,
                    invite_repo,
                    batch_repo,
                    batch=batch,
                    edition=edition,
                    distance=distance,
                    row=row,
                    email_normalized=email_normalized,
                    date_of_birth=date_of_birth,
                    matched_user=matched_user,
                    fee_policy=fee_policy,
                    base_price_cents=base_price_cents,
                    expires_at=expires_at,
                    now=now,
                )
        except DomainError as exc:
            await batch_repo.mark_row_failed(row, str(exc.code))
            result.failed += 1
            continue
        result.succeeded += 1
        result.invites.append(issued)

    result.remaining = await batch_repo.count_pending_rows(batch.id)
    if result.remaining == 0:
        result.group_discount_percent_off = await apply_group_discount_once(batch_repo, reg_repo, batch=batch, now=now)
    return result
