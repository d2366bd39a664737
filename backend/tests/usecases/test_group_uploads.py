from contextlib import nullcontext
from datetime import date

import pytest
from ledger_fakes import Ledger
from racereg.domain.errors import ForbiddenError, ValidationError
from racereg.domain.pricing import PercentageFeePolicy
from racereg.models import BatchStatus, EventDistance, EventEdition, GroupRegistrationBatch, RegistrationStatus, User
from racereg.usecases import group_uploads as group_uc
from racereg.utils.auth import hash_invite_token

ROSTER = (
    "\ufefffirstName,lastName,email,dateOfBirth,phone\n"
    "Ana,Ruiz,ana@example.com,1990-04-01,555-0101\n"
    "Ben,Soto,Ben@Example.com,1988-11-20,\n"
    "\n"
    "Cam,Diaz,cam@example.com,1995-02-14,\n"
)


def test_parse_roster_strips_bom_and_skips_blank_lines() -> None:
    rows = group_uc.parse_roster_csv(ROSTER, max_rows=10)

    assert [index for index, _ in rows] == [2, 3, 5]
    assert rows[0][1]["firstName"] == "Ana"
    assert rows[0][1]["phone"] == "555-0101"


def test_parse_roster_rejects_missing_columns_and_oversized_files() -> None:
    with pytest.raises(ValidationError, match="dateOfBirth"):
        group_uc.parse_roster_csv("firstName,lastName,email\nAna,Ruiz,ana@example.com\n", max_rows=10)
    with pytest.raises(ValidationError, match="maximum of 2 rows"):
        group_uc.parse_roster_csv(ROSTER, max_rows=2)
    with pytest.raises(ValidationError):
        group_uc.parse_roster_csv("firstName,lastName,email,dateOfBirth\n", max_rows=10)


def test_validate_rows_reports_field_errors() -> None:
    rows = group_uc.parse_roster_csv(
        "firstName,lastName,email,dateOfBirth\n"
        ",Ruiz,ana@example.com,1990-04-01\n"
        "Ana,Ruiz,ANA@example.com,1990-04-01\n"
        "Ben,Soto,not-an-email,01/04/1990\n"
        "Cam,Diaz,cam@example.com,1995-02-14\n",
        max_rows=10,
    )
    known = User(id=9, email="cam@example.com", name="cam", date_of_birth=date(1995, 2, 15))

    validated = group_uc.validate_roster_rows(rows, {"cam@example.com": known})
    errors = {index: errs for index, _, errs in validated}

    assert errors[2] == ["MISSING_FIRST_NAME", "DUPLICATE_EMAIL_IN_FILE"]
    assert errors[3] == ["DUPLICATE_EMAIL_IN_FILE"]
    assert errors[4] == ["INVALID_EMAIL", "INVALID_DOB"]
    assert errors[5] == ["DOB_MISMATCH"]
    assert validated[1][1]["emailNormalized"] == "ana@example.com"


def _setup(
    ledger: Ledger, *, capacity: int | None = None
) -> tuple[EventEdition, EventDistance, User, GroupRegistrationBatch]:
    edition = ledger.add_edition()
    distance = ledger.add_distance(edition, capacity=capacity, price_cents=10000)
    coordinator = ledger.add_user("coach@example.com")
    return edition, distance, coordinator, ledger.add_batch(edition, distance, coordinator)


async def _upload(ledger: Ledger, batch: GroupRegistrationBatch, user: User, csv_text: str = ROSTER) -> None:
    async with ledger.unit() as repos:
        await group_uc.upload_roster(
            repos.batches,
            repos.users,
            batch_id=batch.id,
            user_id=user.id,
            csv_text=csv_text,
            max_rows=50,
        )


async def _reserve(
    ledger: Ledger,
    batch: GroupRegistrationBatch,
    user: User,
    fee_policy: PercentageFeePolicy,
    *,
    limit: int = 50,
) -> group_uc.BatchReservationResult:
    async with ledger.unit() as repos:
        return await group_uc.reserve_invites_for_batch(
            repos.events,
            repos.registrations,
            repos.users,
            repos.invites,
            repos.batches,
            batch_id=batch.id,
            user_id=user.id,
            limit=limit,
            invite_hold_hours=48,
            fee_policy=fee_policy,
            row_transaction=nullcontext,
            now=ledger.now,
        )


@pytest.mark.asyncio
async def test_upload_stores_validated_rows(ledger: Ledger) -> None:
    _, _, coordinator, batch = _setup(ledger)

    await _upload(ledger, batch, coordinator)

    assert batch.status == BatchStatus.VALIDATED
    assert [row.row_index for row in ledger.rows] == [2, 3, 5]
    assert all(row.validation_errors == [] for row in ledger.rows)


@pytest.mark.asyncio
async def test_only_the_coordinator_may_upload(ledger: Ledger) -> None:
    _, _, _, batch = _setup(ledger)
    stranger = ledger.add_user("someone@example.com")

    with pytest.raises(ForbiddenError):
        await _upload(ledger, batch, stranger)


@pytest.mark.asyncio
async def test_reserve_before_upload_is_rejected(ledger: Ledger, fee_policy: PercentageFeePolicy) -> None:
    _, _, coordinator, batch = _setup(ledger)

    with pytest.raises(ValidationError):
        await _reserve(ledger, batch, coordinator, fee_policy)


@pytest.mark.asyncio
async def test_reserve_continues_past_sold_out_rows(ledger: Ledger, fee_policy: PercentageFeePolicy) -> None:
    edition, distance, coordinator, batch = _setup(ledger, capacity=2)
    ledger.add_rule(edition, min_participants=2, percent_off=10)
    await _upload(ledger, batch, coordinator)

    result = await _reserve(ledger, batch, coordinator, fee_policy)

    assert (result.processed, result.succeeded, result.failed, result.remaining) == (3, 2, 1, 0)
    assert ledger.rows[2].validation_errors == ["SOLD_OUT"]
    assert ledger.active_count(ledger.now, distance_id=distance.id) == 2
    assert result.group_discount_percent_off == 10

    for issued in result.invites:
        registration = ledger.registrations[issued.registration_id]
        assert registration.buyer_user_id is None
        assert registration.status == RegistrationStatus.STARTED
        assert registration.base_price_cents == 9000
        assert registration.total_cents == 10000 + 500 - 1000
        invite = next(i for i in ledger.invites if i.registration_id == registration.id)
        assert invite.token_hash == hash_invite_token(issued.token)
        assert ledger.registrants[registration.id].profile_snapshot["firstName"] in ("Ana", "Ben")
    assert [issued.email for issued in result.invites] == ["ana@example.com", "Ben@Example.com"]
    assert batch.status == BatchStatus.PROCESSED


@pytest.mark.asyncio
async def test_group_discount_is_applied_once(ledger: Ledger, fee_policy: PercentageFeePolicy) -> None:
    edition, _, coordinator, batch = _setup(ledger)
    ledger.add_rule(edition, min_participants=2, percent_off=10)
    ledger.add_rule(edition, min_participants=3, percent_off=15)
    await _upload(ledger, batch, coordinator)

    first = await _reserve(ledger, batch, coordinator, fee_policy, limit=2)
    assert (first.succeeded, first.remaining, first.group_discount_percent_off) == (2, 1, None)
    assert batch.status == BatchStatus.VALIDATED

    second = await _reserve(ledger, batch, coordinator, fee_policy, limit=2)
    assert (second.succeeded, second.remaining, second.group_discount_percent_off) == (1, 0, 15)

    third = await _reserve(ledger, batch, coordinator, fee_policy)
    assert (third.processed, third.group_discount_percent_off) == (0, None)
    assert sorted(reg.base_price_cents for reg in ledger.registrations.values()) == [8500, 8500, 8500]


@pytest.mark.asyncio
async def test_reupload_after_reservation_is_blocked(ledger: Ledger, fee_policy: PercentageFeePolicy) -> None:
    _, _, coordinator, batch = _setup(ledger)
    await _upload(ledger, batch, coordinator)
    await _reserve(ledger, batch, coordinator, fee_policy, limit=1)

    with pytest.raises(ValidationError):
        await _upload(ledger, batch, coordinator)


@pytest.mark.asyncio
async def test_rows_with_open_invites_elsewhere_fail(ledger: Ledger, fee_policy: PercentageFeePolicy) -> None:
    edition, distance, coordinator, batch = _setup(ledger)
    await _upload(ledger, batch, coordinator)
    await _reserve(ledger, batch, coordinator, fee_policy)

    other_coordinator = ledger.add_user("coach2@example.com")
    other_batch = ledger.add_batch(edition, distance, other_coordinator)
    await _upload(
        ledger,
        other_batch,
        other_coordinator,
        "firstName,lastName,email,dateOfBirth\nAna,Ruiz,ana@example.com,1990-04-01\n",
    )
    result = await _reserve(ledger, other_batch, other_coordinator, fee_policy)

    assert (result.succeeded, result.failed) == (0, 1)
    assert ledger.rows[-1].validation_errors == ["EXISTING_ACTIVE_INVITE"]
