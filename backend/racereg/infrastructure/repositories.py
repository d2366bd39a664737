from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Sequence

from sqlalchemy import ColumnElement, and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import DiscountAlreadyAppliedError
from ..domain.pricing import PriceQuote
from ..domain.repositories import (
    DiscountRepository,
    EventRepository,
    GroupBatchRepository,
    InviteRepository,
    RegistrationRepository,
    UserRepository,
)
from ..models import (
    HOLD_STATUSES,
    AddOnOption,
    AddOnSelection,
    BatchStatus,
    DiscountCode,
    DiscountRedemption,
    EventDistance,
    EventEdition,
    GroupDiscountRule,
    GroupRegistrationBatch,
    GroupRegistrationBatchRow,
    InviteStatus,
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

OPEN_INVITE_STATUSES = (InviteStatus.DRAFT, InviteStatus.SENT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def active_registration_clause(now: datetime) -> ColumnElement[bool]:
    """Confirmed, or a hold whose ``expires_at`` is still in the future."""
    return and_(
        Registration.deleted_at.is_(None),
        or_(
            Registration.status == RegistrationStatus.CONFIRMED,
            and_(Registration.status.in_(HOLD_STATUSES), Registration.expires_at > now),
        ),
    )


class SqlAlchemyEventRepository(EventRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_edition(self, edition_id: int) -> EventEdition | None:
        stmt = select(EventEdition).where(EventEdition.id == edition_id, EventEdition.deleted_at.is_(None))
        result = await self.session.scalar(stmt)
        return result if isinstance(result, EventEdition) else None

    async def get_distance(self, distance_id: int) -> EventDistance | None:
        stmt = select(EventDistance).where(EventDistance.id == distance_id, EventDistance.deleted_at.is_(None))
        result = await self.session.scalar(stmt)
        return result if isinstance(result, EventDistance) else None

    async def lock_edition(self, edition_id: int) -> EventEdition | None:
        stmt = (
            select(EventEdition)
            .where(EventEdition.id == edition_id, EventEdition.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, EventEdition) else None

    async def lock_distance(self, distance_id: int) -> EventDistance | None:
        stmt = (
            select(EventDistance)
            .where(EventDistance.id == distance_id, EventDistance.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, EventDistance) else None

    async def list_pricing_tiers(self, distance_id: int) -> List[PricingTier]:
        stmt = (
            select(PricingTier)
            .where(PricingTier.distance_id == distance_id, PricingTier.deleted_at.is_(None))
            .order_by(PricingTier.sort_order, PricingTier.id)
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_waivers(self, edition_id: int) -> List[Waiver]:
        stmt = (
            select(Waiver)
            .where(Waiver.edition_id == edition_id, Waiver.deleted_at.is_(None))
            .order_by(Waiver.id)
        )
        return list((await self.session.scalars(stmt)).all())

    async def get_waiver(self, waiver_id: int) -> Waiver | None:
        stmt = select(Waiver).where(Waiver.id == waiver_id, Waiver.deleted_at.is_(None))
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Waiver) else None

    async def list_questions(self, edition_id: int, distance_id: int) -> List[RegistrationQuestion]:
        stmt = (
            select(RegistrationQuestion)
            .where(
                RegistrationQuestion.edition_id == edition_id,
                RegistrationQuestion.deleted_at.is_(None),
                RegistrationQuestion.is_active.is_(True),
                or_(RegistrationQuestion.distance_id.is_(None), RegistrationQuestion.distance_id == distance_id),
            )
            .order_by(RegistrationQuestion.sort_order, RegistrationQuestion.id)
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_add_on_options(self, option_ids: Iterable[int]) -> List[AddOnOption]:
        ids = list(option_ids)
        if not ids:
            return []
        stmt = select(AddOnOption).where(AddOnOption.id.in_(ids), AddOnOption.deleted_at.is_(None))
        return list((await self.session.scalars(stmt)).all())


class SqlAlchemyRegistrationRepository(RegistrationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, registration_id: int) -> Registration | None:
        stmt = select(Registration).where(Registration.id == registration_id, Registration.deleted_at.is_(None))
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Registration) else None

    async def get_for_update(self, registration_id: int) -> Registration | None:
        stmt = (
            select(Registration)
            .where(Registration.id == registration_id, Registration.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Registration) else None

    async def count_active(
        self,
        *,
        now: datetime,
        distance_id: int | None = None,
        edition_id: int | None = None,
        exclude_ids: Sequence[int] = (),
    ) -> int:
        if (distance_id is None) == (edition_id is None):
            raise ValueError("exactly one of distance_id or edition_id is required")
        stmt = select(func.count(Registration.id)).where(active_registration_clause(now))
        if distance_id is not None:
            stmt = stmt.where(Registration.distance_id == distance_id)
        else:
            stmt = stmt.where(Registration.edition_id == edition_id)
        if exclude_ids:
            stmt = stmt.where(Registration.id.not_in(list(exclude_ids)))
        return int(await self.session.scalar(stmt) or 0)

    async def find_active_in_edition(
        self,
        *,
        buyer_user_id: int,
        edition_id: int,
        now: datetime,
    ) -> Registration | None:
        stmt = (
            select(Registration)
            .where(
                Registration.buyer_user_id == buyer_user_id,
                Registration.edition_id == edition_id,
                active_registration_clause(now),
            )
            .order_by(Registration.created_at.desc())
            .limit(1)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Registration) else None

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
    ) -> Registration:
        now = _utcnow()
        registration = Registration(
            edition_id=edition_id,
            distance_id=distance_id,
            buyer_user_id=buyer_user_id,
            payment_responsibility=payment_responsibility,
            status=status,
            base_price_cents=quote.base_price_cents,
            fees_cents=quote.fees_cents,
            tax_cents=quote.tax_cents,
            total_cents=quote.total_cents,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        self.session.add(registration)
        await self.session.flush()
        return registration

    async def transition(
        self,
        registration_id: int,
        *,
        from_statuses: Sequence[RegistrationStatus],
        to_status: RegistrationStatus,
        expires_at: datetime | None,
    ) -> Registration | None:
        stmt = (
            update(Registration)
            .where(
                Registration.id == registration_id,
                Registration.status.in_(list(from_statuses)),
                Registration.deleted_at.is_(None),
            )
            .values(status=to_status, expires_at=expires_at, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.session.get(Registration, registration_id, populate_existing=True)

    async def set_buyer_if_unclaimed(self, registration_id: int, buyer_user_id: int) -> bool:
        stmt = (
            update(Registration)
            .where(
                Registration.id == registration_id,
                or_(Registration.buyer_user_id.is_(None), Registration.buyer_user_id == buyer_user_id),
            )
            .values(buyer_user_id=buyer_user_id, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return False
        await self.session.get(Registration, registration_id, populate_existing=True)
        return True

    async def update_amounts(
        self,
        registration: Registration,
        *,
        total_cents: int,
        base_price_cents: int | None = None,
    ) -> Registration:
        if base_price_cents is not None:
            registration.base_price_cents = base_price_cents
        registration.total_cents = total_cents
        registration.updated_at = _utcnow()
        self.session.add(registration)
        await self.session.flush()
        return registration

    async def list_by_ids(self, registration_ids: Sequence[int]) -> List[Registration]:
        if not registration_ids:
            return []
        stmt = select(Registration).where(
            Registration.id.in_(list(registration_ids)),
            Registration.deleted_at.is_(None),
        )
        return list((await self.session.scalars(stmt)).all())

    async def expire_holds(self, now: datetime) -> List[tuple[int, int]]:
        stmt = (
            select(Registration.id, Registration.edition_id)
            .where(
                Registration.deleted_at.is_(None),
                Registration.status.in_(HOLD_STATUSES),
                or_(Registration.expires_at.is_(None), Registration.expires_at <= now),
            )
            .with_for_update(skip_locked=True)
        )
        expired = [(int(row.id), int(row.edition_id)) for row in (await self.session.execute(stmt)).all()]
        if not expired:
            return []
        await self.session.execute(
            update(Registration)
            .where(Registration.id.in_([registration_id for registration_id, _ in expired]))
            .where(Registration.status.in_(HOLD_STATUSES))
            .values(status=RegistrationStatus.CANCELLED, expires_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return expired

    async def get_registrant(self, registration_id: int) -> Registrant | None:
        result = await self.session.scalar(select(Registrant).where(Registrant.registration_id == registration_id))
        return result if isinstance(result, Registrant) else None

    async def save_registrant(
        self,
        registration_id: int,
        *,
        user_id: int | None,
        profile_snapshot: dict[str, Any] | None,
        division: str | None = None,
        gender_identity: str | None = None,
    ) -> Registrant:
        now = _utcnow()
        registrant = await self.get_registrant(registration_id)
        if registrant is None:
            registrant = Registrant(registration_id=registration_id, created_at=now)
        registrant.user_id = user_id
        registrant.profile_snapshot = profile_snapshot
        registrant.division = division
        registrant.gender_identity = gender_identity
        registrant.updated_at = now
        self.session.add(registrant)
        await self.session.flush()
        return registrant

    async def attach_registrant_user(self, registration_id: int, user_id: int) -> Registrant:
        now = _utcnow()
        registrant = await self.get_registrant(registration_id)
        if registrant is None:
            registrant = Registrant(registration_id=registration_id, created_at=now)
        registrant.user_id = user_id
        registrant.updated_at = now
        self.session.add(registrant)
        await self.session.flush()
        return registrant

    async def list_waiver_acceptances(self, registration_id: int) -> List[WaiverAcceptance]:
        stmt = select(WaiverAcceptance).where(WaiverAcceptance.registration_id == registration_id)
        return list((await self.session.scalars(stmt)).all())

    async def save_waiver_acceptance(
        self,
        *,
        registration_id: int,
        waiver: Waiver,
        signature_type: SignatureType,
        signature_value: str | None,
        accepted_at: datetime,
    ) -> WaiverAcceptance:
        stmt = select(WaiverAcceptance).where(
            WaiverAcceptance.registration_id == registration_id,
            WaiverAcceptance.waiver_id == waiver.id,
        )
        existing = await self.session.scalar(stmt)
        if isinstance(existing, WaiverAcceptance):
            return existing
        acceptance = WaiverAcceptance(
            registration_id=registration_id,
            waiver_id=waiver.id,
            waiver_version_hash=waiver.version_hash,
            signature_type=signature_type,
            signature_value=signature_value,
            accepted_at=accepted_at,
        )
        self.session.add(acceptance)
        await self.session.flush()
        return acceptance

    async def list_answers(self, registration_id: int) -> List[RegistrationAnswer]:
        stmt = select(RegistrationAnswer).where(RegistrationAnswer.registration_id == registration_id)
        return list((await self.session.scalars(stmt)).all())

    async def upsert_answer(
        self,
        *,
        registration_id: int,
        question_id: int,
        value: str | None,
        now: datetime,
    ) -> RegistrationAnswer:
        stmt = select(RegistrationAnswer).where(
            RegistrationAnswer.registration_id == registration_id,
            RegistrationAnswer.question_id == question_id,
        )
        answer = await self.session.scalar(stmt)
        if not isinstance(answer, RegistrationAnswer):
            answer = RegistrationAnswer(registration_id=registration_id, question_id=question_id)
        answer.value = value
        answer.updated_at = now
        self.session.add(answer)
        await self.session.flush()
        return answer

    async def list_add_on_selections(self, registration_id: int) -> List[AddOnSelection]:
        stmt = select(AddOnSelection).where(
            AddOnSelection.registration_id == registration_id,
            AddOnSelection.deleted_at.is_(None),
        )
        return list((await self.session.scalars(stmt)).all())

    async def upsert_add_on_selection(
        self,
        *,
        registration_id: int,
        option_id: int,
        quantity: int,
        line_total_cents: int,
        now: datetime,
    ) -> AddOnSelection:
        stmt = select(AddOnSelection).where(
            AddOnSelection.registration_id == registration_id,
            AddOnSelection.option_id == option_id,
        )
        selection = await self.session.scalar(stmt)
        if not isinstance(selection, AddOnSelection):
            selection = AddOnSelection(registration_id=registration_id, option_id=option_id)
        selection.quantity = quantity
        selection.line_total_cents = line_total_cents
        selection.updated_at = now
        selection.deleted_at = None
        self.session.add(selection)
        await self.session.flush()
        return selection

    async def remove_add_on_selections(
        self,
        registration_id: int,
        *,
        keep_option_ids: Sequence[int],
        now: datetime,
    ) -> int:
        stmt = (
            update(AddOnSelection)
            .where(
                AddOnSelection.registration_id == registration_id,
                AddOnSelection.deleted_at.is_(None),
            )
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if keep_option_ids:
            stmt = stmt.where(AddOnSelection.option_id.not_in(list(keep_option_ids)))
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def sum_add_on_totals(self, registration_id: int) -> int:
        stmt = select(func.coalesce(func.sum(AddOnSelection.line_total_cents), 0)).where(
            AddOnSelection.registration_id == registration_id,
            AddOnSelection.deleted_at.is_(None),
        )
        return int(await self.session.scalar(stmt) or 0)


class SqlAlchemyDiscountRepository(DiscountRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_code(self, edition_id: int, code: str) -> DiscountCode | None:
        stmt = select(DiscountCode).where(
            DiscountCode.edition_id == edition_id,
            DiscountCode.code == code,
            DiscountCode.deleted_at.is_(None),
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, DiscountCode) else None

    async def lock_code(self, discount_code_id: int) -> DiscountCode | None:
        stmt = (
            select(DiscountCode)
            .where(DiscountCode.id == discount_code_id, DiscountCode.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, DiscountCode) else None

    async def count_active_redemptions(self, discount_code_id: int, now: datetime) -> int:
        stmt = (
            select(func.count(DiscountRedemption.id))
            .join(Registration, Registration.id == DiscountRedemption.registration_id)
            .where(DiscountRedemption.discount_code_id == discount_code_id, active_registration_clause(now))
        )
        return int(await self.session.scalar(stmt) or 0)

    async def get_redemption(self, registration_id: int) -> DiscountRedemption | None:
        stmt = select(DiscountRedemption).where(DiscountRedemption.registration_id == registration_id)
        result = await self.session.scalar(stmt)
        return result if isinstance(result, DiscountRedemption) else None

    async def create_redemption(
        self,
        *,
        registration_id: int,
        discount_code_id: int,
        discount_amount_cents: int,
        redeemed_at: datetime,
    ) -> DiscountRedemption:
        redemption = DiscountRedemption(
            registration_id=registration_id,
            discount_code_id=discount_code_id,
            discount_amount_cents=discount_amount_cents,
            redeemed_at=redeemed_at,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(redemption)
                await self.session.flush()
        except IntegrityError as exc:
            raise DiscountAlreadyAppliedError() from exc
        return redemption

    async def delete_redemption(self, redemption: DiscountRedemption) -> None:
        await self.session.execute(delete(DiscountRedemption).where(DiscountRedemption.id == redemption.id))

    async def list_codes_with_counts(self, edition_id: int, now: datetime) -> List[tuple[DiscountCode, int]]:
        active_count = (
            select(func.count(DiscountRedemption.id))
            .join(Registration, Registration.id == DiscountRedemption.registration_id)
            .where(DiscountRedemption.discount_code_id == DiscountCode.id, active_registration_clause(now))
            .correlate(DiscountCode)
            .scalar_subquery()
        )
        stmt = (
            select(DiscountCode, active_count.label("active_redemptions"))
            .where(DiscountCode.edition_id == edition_id, DiscountCode.deleted_at.is_(None))
            .order_by(DiscountCode.created_at, DiscountCode.id)
        )
        rows = await self.session.execute(stmt)
        return [(code, int(count or 0)) for code, count in rows.all()]


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: int) -> User | None:
        result = await self.session.scalar(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
        return result if isinstance(result, User) else None

    async def list_by_emails(self, emails: Sequence[str]) -> List[User]:
        if not emails:
            return []
        stmt = select(User).where(func.lower(User.email).in_(list(emails)), User.deleted_at.is_(None))
        return list((await self.session.scalars(stmt)).all())

    async def set_date_of_birth(self, user: User, value: date) -> User:
        user.date_of_birth = value
        user.updated_at = _utcnow()
        self.session.add(user)
        await self.session.flush()
        return user


class SqlAlchemyInviteRepository(InviteRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_current_for_email(
        self,
        *,
        edition_id: int,
        email_normalized: str,
        now: datetime,
    ) -> RegistrationInvite | None:
        stmt = select(RegistrationInvite).where(
            RegistrationInvite.edition_id == edition_id,
            RegistrationInvite.email_normalized == email_normalized,
            RegistrationInvite.is_current.is_(True),
            RegistrationInvite.status.in_(OPEN_INVITE_STATUSES),
            RegistrationInvite.expires_at > now,
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, RegistrationInvite) else None

    async def get_by_token_hash_for_update(self, token_hash: str) -> RegistrationInvite | None:
        stmt = (
            select(RegistrationInvite)
            .where(RegistrationInvite.token_hash == token_hash)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, RegistrationInvite) else None

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
    ) -> RegistrationInvite:
        invite = RegistrationInvite(
            edition_id=edition_id,
            batch_id=batch_id,
            batch_row_id=batch_row_id,
            registration_id=registration_id,
            created_by_user_id=created_by_user_id,
            email=email,
            email_normalized=email_normalized,
            date_of_birth=date_of_birth,
            token_hash=token_hash,
            status=InviteStatus.DRAFT,
            is_current=True,
            expires_at=expires_at,
            created_at=now,
        )
        self.session.add(invite)
        await self.session.flush()
        return invite

    async def mark_claimed(self, invite: RegistrationInvite, *, user_id: int, now: datetime) -> RegistrationInvite:
        invite.status = InviteStatus.CLAIMED
        invite.claimed_at = now
        invite.claimed_by_user_id = user_id
        self.session.add(invite)
        await self.session.flush()
        return invite

    async def mark_expired(self, invite: RegistrationInvite) -> RegistrationInvite:
        invite.status = InviteStatus.EXPIRED
        invite.is_current = False
        self.session.add(invite)
        await self.session.flush()
        return invite

    async def expire_for_registrations(self, registration_ids: Sequence[int]) -> int:
        if not registration_ids:
            return 0
        stmt = (
            update(RegistrationInvite)
            .where(
                RegistrationInvite.registration_id.in_(list(registration_ids)),
                RegistrationInvite.status.in_(OPEN_INVITE_STATUSES),
                RegistrationInvite.is_current.is_(True),
            )
            .values(status=InviteStatus.EXPIRED, is_current=False)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)


class SqlAlchemyGroupBatchRepository(GroupBatchRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_batch(self, batch_id: int) -> GroupRegistrationBatch | None:
        result = await self.session.get(GroupRegistrationBatch, batch_id)
        return result if isinstance(result, GroupRegistrationBatch) else None

    async def replace_rows(
        self,
        batch: GroupRegistrationBatch,
        rows: Sequence[tuple[int, dict[str, Any], list[str]]],
    ) -> List[GroupRegistrationBatchRow]:
        await self.session.execute(
            delete(GroupRegistrationBatchRow).where(GroupRegistrationBatchRow.batch_id == batch.id)
        )
        created = [
            GroupRegistrationBatchRow(
                batch_id=batch.id,
                row_index=row_index,
                raw_json=raw,
                validation_errors=errors,
            )
            for row_index, raw, errors in rows
        ]
        self.session.add_all(created)
        batch.status = BatchStatus.VALIDATED
        self.session.add(batch)
        await self.session.flush()
        return created

    async def _unreserved_rows(self, batch_id: int) -> List[GroupRegistrationBatchRow]:
        stmt = (
            select(GroupRegistrationBatchRow)
            .where(
                GroupRegistrationBatchRow.batch_id == batch_id,
                GroupRegistrationBatchRow.created_registration_id.is_(None),
            )
            .order_by(GroupRegistrationBatchRow.row_index)
        )
        rows = (await self.session.scalars(stmt)).all()
        # validation_errors is a JSON list; filtering in Python keeps this dialect-neutral.
        return [row for row in rows if not row.validation_errors]

    async def list_pending_rows(self, batch_id: int, *, limit: int) -> List[GroupRegistrationBatchRow]:
        return (await self._unreserved_rows(batch_id))[:limit]

    async def count_pending_rows(self, batch_id: int) -> int:
        return len(await self._unreserved_rows(batch_id))

    async def mark_row_failed(self, row: GroupRegistrationBatchRow, error_code: str) -> None:
        row.validation_errors = [error_code]
        self.session.add(row)
        await self.session.flush()

    async def mark_row_reserved(self, row: GroupRegistrationBatchRow, registration_id: int) -> None:
        row.created_registration_id = registration_id
        self.session.add(row)
        await self.session.flush()

    async def mark_processed_once(self, batch_id: int, now: datetime) -> bool:
        stmt = (
            update(GroupRegistrationBatch)
            .where(
                GroupRegistrationBatch.id == batch_id,
                GroupRegistrationBatch.status != BatchStatus.PROCESSED,
            )
            .values(status=BatchStatus.PROCESSED, processed_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def list_reserved_registration_ids(self, batch_id: int) -> List[int]:
        stmt = select(GroupRegistrationBatchRow.created_registration_id).where(
            GroupRegistrationBatchRow.batch_id == batch_id,
            GroupRegistrationBatchRow.created_registration_id.is_not(None),
        )
        return [int(value) for value in (await self.session.scalars(stmt)).all() if value is not None]

    async def list_active_discount_rules(self, edition_id: int) -> List[GroupDiscountRule]:
        stmt = (
            select(GroupDiscountRule)
            .where(GroupDiscountRule.edition_id == edition_id, GroupDiscountRule.is_active.is_(True))
            .order_by(GroupDiscountRule.min_participants.desc())
        )
        return list((await self.session.scalars(stmt)).all())

