import asyncio
from datetime import timedelta

import pytest
from ledger_fakes import Ledger
from racereg.domain.errors import (
    DiscountAlreadyAppliedError,
    DiscountInvalidError,
    ErrorCode,
    ForbiddenError,
    MaxRedemptionsError,
    NotFoundError,
    RegistrationExpiredError,
    ValidationError,
)
from racereg.domain.expiry import ExpiryPolicy
from racereg.domain.pricing import PercentageFeePolicy
from racereg.models import EventDistance, EventEdition, Registration, RegistrationStatus
from racereg.usecases import discounts as discount_uc
from racereg.usecases import pricing as pricing_uc
from racereg.usecases import registrations as registration_uc


async def _hold(
    ledger: Ledger,
    distance: EventDistance,
    email: str,
    expiry_policy: ExpiryPolicy,
    fee_policy: PercentageFeePolicy,
) -> Registration:
    user = ledger.add_user(email)
    async with ledger.unit() as repos:
        registration, _ = await registration_uc.start_registration(
            repos.events,
            repos.registrations,
            repos.users,
            repos.invites,
            distance_id=distance.id,
            buyer_user_id=user.id,
            expiry_policy=expiry_policy,
            fee_policy=fee_policy,
            now=ledger.now,
        )
    return registration


async def _apply(ledger: Ledger, registration: Registration, code: str, *, user_id: int | None = None) -> Registration:
    async with ledger.unit() as repos:
        updated, _ = await discount_uc.apply_discount_code(
            repos.discounts,
            repos.registrations,
            registration_id=registration.id,
            user_id=user_id if user_id is not None else registration.buyer_user_id,
            code=code,
            now=ledger.now,
        )
    return updated


def _edition_with_distance(ledger: Ledger, *, base_price: int = 10000) -> tuple[EventEdition, EventDistance]:
    edition = ledger.add_edition()
    return edition, ledger.add_distance(edition, capacity=100, price_cents=base_price)


@pytest.mark.asyncio
async def test_save10_takes_ten_percent_of_base(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    edition, distance = _edition_with_distance(ledger, base_price=10000)
    ledger.add_code(edition, "SAVE10", 10)
    registration = await _hold(ledger, distance, "ana@example.com", expiry_policy, fee_policy)

    async with ledger.unit() as repos:
        updated, redemption = await discount_uc.apply_discount_code(
            repos.discounts,
            repos.registrations,
            registration_id=registration.id,
            user_id=registration.buyer_user_id,
            code=" save10 ",
            now=ledger.now,
        )

    assert redemption.discount_amount_cents == 1000
    assert updated.total_cents == 10000 + 500 - 1000
    assert ledger.lock_log[-2:] == [("discount_code", redemption.discount_code_id), ("registration", registration.id)]


@pytest.mark.asyncio
async def test_apply_then_remove_restores_total(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    edition, distance = _edition_with_distance(ledger, base_price=50000)
    ledger.add_code(edition, "SAVE10", 10)
    shirt = ledger.add_add_on(edition, 15000)
    registration = await _hold(ledger, distance, "ana@example.com", expiry_policy, fee_policy)

    async with ledger.unit() as repos:
        with_add_ons, _ = await pricing_uc.submit_add_on_selections(
            repos.events,
            repos.registrations,
            repos.discounts,
            registration_id=registration.id,
            user_id=registration.buyer_user_id,
            choices=[pricing_uc.AddOnChoice(option_id=shirt.id, quantity=2)],
            now=ledger.now,
        )
    before = with_add_ons.total_cents
    assert before == 50000 + 2500 + 30000

    discounted = await _apply(ledger, registration, "SAVE10")
    assert discounted.total_cents == before - 5000

    async with ledger.unit() as repos:
        restored, removed = await discount_uc.remove_discount_code(
            repos.discounts,
            repos.registrations,
            registration_id=registration.id,
            user_id=registration.buyer_user_id,
            now=ledger.now,
        )

    assert removed.discount_amount_cents == 5000
    assert restored.total_cents == before
    assert ledger.redemptions == {}


@pytest.mark.asyncio
async def test_second_apply_is_rejected(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    edition, distance = _edition_with_distance(ledger)
    ledger.add_code(edition, "SAVE10", 10)
    ledger.add_code(edition, "SAVE20", 20)
    registration = await _hold(ledger, distance, "ana@example.com", expiry_policy, fee_policy)
    await _apply(ledger, registration, "SAVE10")

    with pytest.raises(DiscountAlreadyAppliedError):
        await _apply(ledger, registration, "SAVE20")


@pytest.mark.asyncio
async def test_remove_without_discount_fails(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    _, distance = _edition_with_distance(ledger)
    registration = await _hold(ledger, distance, "ana@example.com", expiry_policy, fee_policy)

    async with ledger.unit() as repos:
        with pytest.raises(DiscountInvalidError) as excinfo:
            await discount_uc.remove_discount_code(
                repos.discounts,
                repos.registrations,
                registration_id=registration.id,
                user_id=registration.buyer_user_id,
                now=ledger.now,
            )
    assert excinfo.value.code == ErrorCode.NO_DISCOUNT


@pytest.mark.asyncio
async def test_apply_rejects_unknown_expired_and_foreign(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    edition, distance = _edition_with_distance(ledger)
    ledger.add_code(edition, "LATE", 10, ends_at=ledger.now)
    registration = await _hold(ledger, distance, "ana@example.com", expiry_policy, fee_policy)
    stranger = ledger.add_user("ben@example.com")

    with pytest.raises(DiscountInvalidError) as unknown:
        await _apply(ledger, registration, "NOPE")
    assert unknown.value.code == ErrorCode.INVALID_CODE

    with pytest.raises(DiscountInvalidError) as expired:
        await _apply(ledger, registration, "LATE")
    assert expired.value.code == ErrorCode.CODE_EXPIRED

    with pytest.raises(ForbiddenError):
        await _apply(ledger, registration, "LATE", user_id=stranger.id)


@pytest.mark.asyncio
async def test_apply_on_expired_hold_is_rejected(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    edition, distance = _edition_with_distance(ledger)
    ledger.add_code(edition, "SAVE10", 10)
    registration = await _hold(ledger, distance, "ana@example.com", expiry_policy, fee_policy)
    ledger.now = ledger.now + timedelta(hours=1)

    with pytest.raises(RegistrationExpiredError):
        await _apply(ledger, registration, "SAVE10")


@pytest.mark.asyncio
async def test_concurrent_applies_respect_redemption_cap(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    edition, distance = _edition_with_distance(ledger)
    code = ledger.add_code(edition, "FIRST3", 15, max_redemptions=3)
    holds = [await _hold(ledger, distance, f"runner{i}@example.com", expiry_policy, fee_policy) for i in range(8)]

    results = await asyncio.gather(*(_apply(ledger, hold, "FIRST3") for hold in holds), return_exceptions=True)

    assert sum(1 for r in results if isinstance(r, Registration)) == 3
    assert sum(1 for r in results if isinstance(r, MaxRedemptionsError)) == 5
    async with ledger.unit() as repos:
        assert await repos.discounts.count_active_redemptions(code.id, ledger.now) == 3


@pytest.mark.asyncio
async def test_cancelled_holds_stop_counting_against_cap(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    edition, distance = _edition_with_distance(ledger)
    ledger.add_code(edition, "ONCE", 10, max_redemptions=1)
    first = await _hold(ledger, distance, "ana@example.com", expiry_policy, fee_policy)
    second = await _hold(ledger, distance, "ben@example.com", expiry_policy, fee_policy)
    await _apply(ledger, first, "ONCE")

    with pytest.raises(MaxRedemptionsError):
        await _apply(ledger, second, "ONCE")

    first.status = RegistrationStatus.CANCELLED
    updated = await _apply(ledger, second, "ONCE")
    assert updated.total_cents == 10000 + 500 - 1000


@pytest.mark.asyncio
async def test_validate_is_advisory(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    edition, distance = _edition_with_distance(ledger)
    code = ledger.add_code(edition, "SAVE10", 10, max_redemptions=5)
    registration = await _hold(ledger, distance, "ana@example.com", expiry_policy, fee_policy)
    await _apply(ledger, registration, "SAVE10")
    locks_taken = len(ledger.lock_log)

    async with ledger.unit() as repos:
        result = await discount_uc.validate_discount_code(
            repos.discounts,
            edition_id=edition.id,
            code="save10",
            base_price_cents=20000,
            now=ledger.now,
        )
        listed = await discount_uc.list_discount_codes(repos.discounts, edition_id=edition.id, now=ledger.now)

    assert result.code.id == code.id
    assert result.active_redemptions == 1
    assert result.discount_amount_cents == 2000
    assert listed == [(code, 1)]
    assert len(ledger.lock_log) == locks_taken


@pytest.mark.asyncio
async def test_add_on_selection_replaces_previous_choice(
    ledger: Ledger, expiry_policy: ExpiryPolicy, fee_policy: PercentageFeePolicy
) -> None:
    edition, distance = _edition_with_distance(ledger, base_price=10000)
    shirt = ledger.add_add_on(edition, 2000)
    medal = ledger.add_add_on(edition, 5000, label="Medal", max_qty_per_order=1)
    registration = await _hold(ledger, distance, "ana@example.com", expiry_policy, fee_policy)

    async def submit(*choices: pricing_uc.AddOnChoice) -> Registration:
        async with ledger.unit() as repos:
            updated, _ = await pricing_uc.submit_add_on_selections(
                repos.events,
                repos.registrations,
                repos.discounts,
                registration_id=registration.id,
                user_id=registration.buyer_user_id,
                choices=list(choices),
                now=ledger.now,
            )
        return updated

    updated = await submit(
        pricing_uc.AddOnChoice(option_id=shirt.id, quantity=2),
        pricing_uc.AddOnChoice(option_id=medal.id, quantity=1),
    )
    assert updated.total_cents == 10500 + 4000 + 5000

    updated = await submit(pricing_uc.AddOnChoice(option_id=shirt.id, quantity=1))
    assert updated.total_cents == 10500 + 2000

    updated = await submit(pricing_uc.AddOnChoice(option_id=shirt.id, quantity=0))
    assert updated.total_cents == 10500

    with pytest.raises(ValidationError):
        await submit(pricing_uc.AddOnChoice(option_id=medal.id, quantity=2))
    with pytest.raises(NotFoundError):
        await submit(pricing_uc.AddOnChoice(option_id=9999, quantity=1))
