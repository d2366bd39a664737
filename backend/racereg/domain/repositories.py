from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Protocol, Sequence

from ..models import (
    AddOnOption,
    AddOnSelection,
    DiscountCode,
    DiscountRedemption,
    EventDistance,
    EventEdition,
    GroupDiscountRule,
    GroupRegistrationBatch,
    GroupRegistrationBatchRow,
    PaymentResponsibility,
    PricingTier,
    Registrant,
    Registration,
    RegistrationAnswer,
    RegistrationInvite,
    RegistrationQuestion,
    RegistrationStatus,
    SignatureType,
    User,
    Waiver,
    WaiverAcceptance,
)
from .pricing import PriceQuote


class EventRepository(Protocol):
    async def get_edition(self, edition_id: int) -> EventEdition | None: ...

    async def get_distance(self, distance_id: int) -> EventDistance | None: ...

    async def lock_edition(self, edition_id: int) -> EventEdition | None: ...

    async def lock_distance(self, distance_id: int) -> EventDistance | None: ...

    async def list_pricing_tiers(self, distance_id: int) -> list[PricingTier]: ...

    async def list_waivers(self, edition_id: int) -> list[Waiver]: ...

    async def get_waiver(self, waiver_id: int) -> Waiver | None: ...

    async def list_questions(self, edition_id: int, distance_id: int) -> list[RegistrationQuestion]: ...

    async def list_add_on_options(self, option_ids: Iterable[int]) -> list[AddOnOption]: ...


class RegistrationRepository(Protocol):
    async def get(self, registration_id: int) -> Registration | None: ...

    async def get_for_update(self, registration_id: int) -> Registration | None: ...

    async def count_active(
        self,
        *,
        now: datetime,
        distance_id: int | None = None,
        edition_id: int | None = None,
        exclude_ids: Sequence[int] = (),
    ) -> int: ...

    async def find_active_in_edition(
        self,
        *,
        buyer_user_id: int,
        edition_id: int,
        now: datetime,
    ) -> Registration | None: ...

    async def create(
        self,
        *,
        edition_id: int,
        distance_id: int,
        buyer_user_id: int | None,
        payment_responsibility: PaymentResponsibility,
        status: RegistrationStatus,
        expires_at: datetime | None,
        quote: PriceQuote,
    ) -> Registration: ...

    async def transition(
        self,
        registration_id: int,
        *,
        from_statuses: Sequence[RegistrationStatus],
        to_status: RegistrationStatus,
        expires_at: datetime | None,
    ) -> Registration | None: ...

    async def set_buyer_if_unclaimed(self, registration_id: int, buyer_user_id: int) -> bool: ...

    async def update_amounts(
        self,
        registration: Registration,
        *,
        total_cents: int,
        base_price_cents: int | None = None,
    ) -> Registration: ...

    async def list_by_ids(self, registration_ids: Sequence[int]) -> list[Registration]: ...

    async def expire_holds(self, now: datetime) -> list[tuple[int, int]]: ...

    async def get_registrant(self, registration_id: int) -> Registrant | None: ...

    async def save_registrant(
        self,
        registration_id: int,
        *,
        user_id: int | None,
        profile_snapshot: dict[str, Any] | None,
        division: str | None = None,
        gender_identity: str | None = None,
    ) -> Registrant: ...

    async def attach_registrant_user(self, registration_id: int, user_id: int) -> Registrant: ...

    async def list_waiver_acceptances(self, registration_id: int) -> list[WaiverAcceptance]: ...

    async def save_waiver_acceptance(
        self,
        *,
        registration_id: int,
        waiver: Waiver,
        signature_type: SignatureType,
        signature_value: str | None,
        accepted_at: datetime,
    ) -> WaiverAcceptance: ...

    async def list_answers(self, registration_id: int) -> list[RegistrationAnswer]: ...

    async def upsert_answer(
        self,
        *,
        registration_id: int,
        question_id: int,
        value: str | None,
        now: datetime,
    ) -> RegistrationAnswer: ...

    async def list_add_on_selections(self, registration_id: int) -> list[AddOnSelection]: ...

    async def upsert_add_on_selection(
        self,
        *,
        registration_id: int,
        option_id: int,
        quantity: int,
        line_total_cents: int,
        now: datetime,
    ) -> AddOnSelection: ...

    async def remove_add_on_selections(
        self,
        registration_id: int,
        *,
        keep_option_ids: Sequence[int],
        now: datetime,
    ) -> int: ...

    async def sum_add_on_totals(self, registration_id: int) -> int: ...


class DiscountRepository(Protocol):
    async def get_by_code(self, edition_id: int, code: str) -> DiscountCode | None: ...

    async def lock_code(self, discount_code_id: int) -> DiscountCode | None: ...

    async def count_active_redemptions(self, discount_code_id: int, now: datetime) -> int: ...

    async def get_redemption(self, registration_id: int) -> DiscountRedemption | None: ...

    async def create_redemption(
        self,
        *,
        registration_id: int,
        discount_code_id: int,
        discount_amount_cents: int,
        redeemed_at: datetime,
    ) -> DiscountRedemption: ...

    async def delete_redemption(self, redemption: DiscountRedemption) -> None: ...

    async def list_codes_with_counts(self, edition_id: int, now: datetime) -> list[tuple[DiscountCode, int]]: ...


class UserRepository(Protocol):
    async def get(self, user_id: int) -> User | None: ...

    async def list_by_emails(self, emails: Sequence[str]) -> list[User]: ...

    async def set_date_of_birth(self, user: User, value: date) -> User: ...


class InviteRepository(Protocol):
    async def find_current_for_email(
        self,
        *,
        edition_id: int,
        email_normalized: str,
        now: datetime,
    ) -> RegistrationInvite | None: ...

    async def get_by_token_hash_for_update(self, token_hash: str) -> RegistrationInvite | None: ...

    async def create(
        self,
        *,
        edition_id: int,
        batch_id: int,
        batch_row_id: int,
        registration_id: int,
        created_by_user_id: int,
        email: str,
        email_normalized: str,
        date_of_birth: date,
        token_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> RegistrationInvite: ...

    async def mark_claimed(self, invite: RegistrationInvite, *, user_id: int, now: datetime) -> RegistrationInvite: ...

    async def mark_expired(self, invite: RegistrationInvite) -> RegistrationInvite: ...

    async def expire_for_registrations(self, registration_ids: Sequence[int]) -> int: ...


class GroupBatchRepository(Protocol):
    async def get_batch(self, batch_id: int) -> GroupRegistrationBatch | None: ...

    async def replace_rows(
        self,
        batch: GroupRegistrationBatch,
        rows: Sequence[tuple[int, dict[str, Any], list[str]]],
    ) -> list[GroupRegistrationBatchRow]: ...

    async def list_pending_rows(self, batch_id: int, *, limit: int) -> list[GroupRegistrationBatchRow]: ...

    async def count_pending_rows(self, batch_id: int) -> int: ...

    async def mark_row_failed(self, row: GroupRegistrationBatchRow, error_code: str) -> None: ...

    async def mark_row_reserved(self, row: GroupRegistrationBatchRow, registration_id: int) -> None: ...

    async def mark_processed_once(self, batch_id: int, now: datetime) -> bool: ...

    async def list_reserved_registration_ids(self, batch_id: int) -> list[int]: ...

    async def list_active_discount_rules(self, edition_id: int) -> list[GroupDiscountRule]: ...
