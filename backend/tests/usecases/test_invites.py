from contextlib import nullcontext
from datetime import date, timedelta

import pytest
from ledger_fakes import Ledger
from racereg.domain.errors import AlreadyRegisteredError, ErrorCode, InviteError, NotFoundError
from racereg.domain.expiry import ExpiryPolicy
from racereg.domain.pricing import PercentageFeePolicy
from racereg.models import EventDistance, InviteStatus, Registration, RegistrationInvite, User
from racereg.usecases import group_uploads as group_uc
from racereg.usecases import invites as invite_uc
from racereg.usecases import registrations as registration_uc

ANA_DOB = date(1990, 4, 1)


async def _issue_invite(ledger: Ledger, fee_policy: PercentageFeePolicy) -> tuple[str, EventDistance]:
    edition = ledger.add_edition()
    distance = ledger.add_distance(edition, capacity=10, price_cents=10000)
    coordinator = ledger.add_user("coach@example.com")
    batch = ledger.add_batch(edition, distance, coordinator)
    async with ledger.unit() as repos:
        await group_uc.upload_roster(
            repos.batches,
            repos.users,
            batch_id=batch.id,
            user_id=coordinator.id,
            csv_text="firstName,lastName,email,dateOfBirth\nAna,Ruiz,Ana@Example.com,1990-04-01\n",
            max_rows=10,
        )
        result = await group_uc.reserve_invites_for_batch(
            repos.events,
            repos.registrations,
            repos.users,
            repos.invites,
            repos.batches,
            batch_id=batch.id,
            user_id=coordinator.id,
            limit=10,
            invite_hold_hours=48,
            fee_policy=fee_policy,
            row_transaction=nullcontext,
            now=ledger.now,
        )
    return result.invites[0].token, distance


async def _claim(
    ledger: Ledger, token: str, user: User, date_of_birth: date | None = None
) -> tuple[RegistrationInvite, Registration]:
    async with ledger.unit() as repos:
        return await invite_uc.claim_invite(
            repos.invites,
            repos.registrations,
            repos.users,
            token=token,
            user_id=user.id,
            date_of_birth=date_of_birth,
            now=ledger.now,
        )


@pytest.mark.asyncio
async def test_claim_attaches_hold_to_participant(ledger: Ledger, fee_policy: PercentageFeePolicy) -> None:
    token, _ = await _issue_invite(ledger, fee_policy)
    ana = ledger.add_user("ana@example.com")

    invite, registration = await _claim(ledger, token, ana, ANA_DOB)

    assert invite.status == InviteStatus.CLAIMED
    assert invite.claimed_by_user_id == ana.id
    assert registration.buyer_user_id == ana.id
    assert ledger.registrants[registration.id].user_id == ana.id
    assert ana.date_of_birth == ANA_DOB


@pytest.mark.asyncio
async def test_reclaim_by_same_user_returns_same_hold(ledger: Ledger, fee_policy: PercentageFeePolicy) -> None:
    token, _ = await _issue_invite(ledger, fee_policy)
    ana = ledger.add_user("ana@example.com", date_of_birth=ANA_DOB)

    _, first = await _claim(ledger, token, ana)
    _, second = await _claim(ledger, token, ana)

    assert first.id == second.id


@pytest.mark.asyncio
async def test_claim_by_someone_else_after_claim_fails(ledger: Ledger, fee_policy: PercentageFeePolicy) -> None:
    token, _ = await _issue_invite(ledger, fee_policy)
    ana = ledger.add_user("ana@example.com", date_of_birth=ANA_DOB)
    await _claim(ledger, token, ana)

    with pytest.raises(InviteError) as excinfo:
        await _claim(ledger, token, ledger.add_user("ben@example.com"))
    assert excinfo.value.code == ErrorCode.ALREADY_CLAIMED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("email", "profile_dob", "given_dob", "expected"),
    [
        ("ben@example.com", ANA_DOB, None, ErrorCode.EMAIL_MISMATCH),
        ("ana@example.com", None, None, ErrorCode.DOB_REQUIRED),
        ("ana@example.com", None, date(1991, 4, 1), ErrorCode.DOB_MISMATCH),
        ("ana@example.com", date(1991, 4, 1), ANA_DOB, ErrorCode.DOB_MISMATCH),
    ],
)
async def test_claim_identity_checks(
    ledger: Ledger,
    fee_policy: PercentageFeePolicy,
    email: str,
    profile_dob: date | None,
    given_dob: date | None,
    expected: ErrorCode,
) -> None:
    token, _ = await _issue_invite(ledger, fee_policy)
    user = ledger.add_user(email, date_of_birth=profile_dob)

    with pytest.raises(InviteError) as excinfo:
        await _claim(ledger, token, user, given_dob)

    assert excinfo.value.code == expected
    assert all(invite.status == InviteStatus.DRAFT for invite in ledger.invites)


@pytest.mark.asyncio
async def test_claim_after_hold_lapses_fails(ledger: Ledger, fee_policy: PercentageFeePolicy) -> None:
    token, _ = await _issue_invite(ledger, fee_policy)
    ana = ledger.add_user("ana@example.com", date_of_birth=ANA_DOB)
    ledger.now = ledger.now + timedelta(hours=49)

    with pytest.raises(InviteError) as excinfo:
        await _claim(ledger, token, ana)
    assert excinfo.value.code == ErrorCode.INVITE_EXPIRED


@pytest.mark.asyncio
async def test_unknown_token_is_not_found(ledger: Ledger) -> None:
    with pytest.raises(NotFoundError):
        await _claim(ledger, "no-such-token", ledger.add_user("ana@example.com"))


@pytest.mark.asyncio
async def test_open_invite_blocks_self_registration(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    _, distance = await _issue_invite(ledger, fee_policy)
    ana = ledger.add_user("ana@example.com")

    async with ledger.unit() as repos:
        with pytest.raises(AlreadyRegisteredError) as excinfo:
            await registration_uc.start_registration(
                repos.events,
                repos.registrations,
                repos.users,
                repos.invites,
                distance_id=distance.id,
                buyer_user_id=ana.id,
                expiry_policy=expiry_policy,
                fee_policy=fee_policy,
                now=ledger.now,
            )
    assert excinfo.value.code == ErrorCode.HAS_ACTIVE_INVITE
