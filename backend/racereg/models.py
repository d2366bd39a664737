from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Date, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String


class Base(DeclarativeBase):
    pass


class EditionVisibility(StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    UNLISTED = "unlisted"
    ARCHIVED = "archived"


class CapacityScope(StrEnum):
    PER_DISTANCE = "per_distance"
    SHARED_POOL = "shared_pool"


class RegistrationStatus(StrEnum):
    STARTED = "started"
    SUBMITTED = "submitted"
    PAYMENT_PENDING = "payment_pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


HOLD_STATUSES: tuple[RegistrationStatus, ...] = (
    RegistrationStatus.STARTED,
    RegistrationStatus.SUBMITTED,
    RegistrationStatus.PAYMENT_PENDING,
)


class PaymentResponsibility(StrEnum):
    SELF_PAY = "self_pay"
    CENTRAL_PAY = "central_pay"


class SignatureType(StrEnum):
    CHECKBOX = "checkbox"
    INITIALS = "initials"
    SIGNATURE = "signature"


class BatchStatus(StrEnum):
    PENDING = "pending"
    VALIDATED = "validated"
    PROCESSED = "processed"


class QuestionType(StrEnum):
    TEXT = "text"
    SINGLE_SELECT = "single_select"
    CHECKBOX = "checkbox"


class InviteStatus(StrEnum):
    DRAFT = "draft"
    SENT = "sent"
    CLAIMED = "claimed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


def _enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class EventEdition(Base):
    __tablename__ = "event_editions"
    __table_args__ = (
        CheckConstraint("shared_capacity IS NULL OR shared_capacity >= 0", name="chk_editions_shared_capacity"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    label: Mapped[str] = mapped_column(String(50), nullable=False)
    visibility: Mapped[EditionVisibility] = mapped_column(
        _enum(EditionVisibility), nullable=False, default=EditionVisibility.DRAFT
    )
    registration_opens_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    registration_closes_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    is_registration_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    shared_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class EventDistance(Base):
    __tablename__ = "event_distances"
    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity >= 0", name="chk_distances_capacity"),
        Index("idx_distances_edition", "edition_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(ForeignKey("event_editions.id"), nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    capacity_scope: Mapped[CapacityScope] = mapped_column(
        _enum(CapacityScope), nullable=False, default=CapacityScope.PER_DISTANCE
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class PricingTier(Base):
    __tablename__ = "pricing_tiers"
    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="chk_tiers_price"),
        Index("idx_tiers_distance", "distance_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    distance_id: Mapped[int] = mapped_column(ForeignKey("event_distances.id"), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MXN")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        Index("idx_reg_distance_status", "distance_id", "status", "expires_at"),
        Index("idx_reg_edition_status", "edition_id", "status", "expires_at"),
        Index("idx_reg_buyer_edition", "buyer_user_id", "edition_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(ForeignKey("event_editions.id"), nullable=False)
    distance_id: Mapped[int] = mapped_column(ForeignKey("event_distances.id"), nullable=False)
    buyer_user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    payment_responsibility: Mapped[PaymentResponsibility] = mapped_column(
        _enum(PaymentResponsibility), nullable=False, default=PaymentResponsibility.SELF_PAY
    )
    status: Mapped[RegistrationStatus] = mapped_column(
        _enum(RegistrationStatus), nullable=False, default=RegistrationStatus.STARTED
    )
    base_price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fees_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class Registrant(Base):
    __tablename__ = "registrants"
    __table_args__ = (UniqueConstraint("registration_id", name="uq_registrants_registration"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    registration_id: Mapped[int] = mapped_column(ForeignKey("registrations.id"), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    profile_snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    division: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    gender_identity: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Waiver(Base):
    __tablename__ = "waivers"
    __table_args__ = (Index("idx_waivers_edition", "edition_id"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(ForeignKey("event_editions.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    version_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    signature_type: Mapped[SignatureType] = mapped_column(
        _enum(SignatureType), nullable=False, default=SignatureType.CHECKBOX
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class WaiverAcceptance(Base):
    __tablename__ = "waiver_acceptances"
    __table_args__ = (UniqueConstraint("registration_id", "waiver_id", name="uq_waiver_acceptance"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    registration_id: Mapped[int] = mapped_column(ForeignKey("registrations.id"), nullable=False)
    waiver_id: Mapped[int] = mapped_column(ForeignKey("waivers.id"), nullable=False)
    waiver_version_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    signature_type: Mapped[SignatureType] = mapped_column(_enum(SignatureType), nullable=False)
    signature_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    accepted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class RegistrationQuestion(Base):
    __tablename__ = "registration_questions"
    __table_args__ = (Index("idx_questions_edition", "edition_id"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(ForeignKey("event_editions.id"), nullable=False)
    # NULL asks the question on every distance of the edition.
    distance_id: Mapped[Optional[int]] = mapped_column(ForeignKey("event_distances.id"), nullable=True)
    type: Mapped[QuestionType] = mapped_column(_enum(QuestionType), nullable=False, default=QuestionType.TEXT)
    prompt: Mapped[str] = mapped_column(String(500), nullable=False)
    options: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class RegistrationAnswer(Base):
    __tablename__ = "registration_answers"
    __table_args__ = (UniqueConstraint("registration_id", "question_id", name="uq_registration_answer"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    registration_id: Mapped[int] = mapped_column(ForeignKey("registrations.id"), nullable=False)
    question_id: Mapped[int] = mapped_column(ForeignKey("registration_questions.id"), nullable=False)
    value: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class AddOnOption(Base):
    __tablename__ = "add_on_options"
    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="chk_addon_price"),
        CheckConstraint("max_qty_per_order >= 1", name="chk_addon_max_qty"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(ForeignKey("event_editions.id"), nullable=False)
    # NULL applies the option to every distance of the edition.
    distance_id: Mapped[Optional[int]] = mapped_column(ForeignKey("event_distances.id"), nullable=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_qty_per_order: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class AddOnSelection(Base):
    __tablename__ = "add_on_selections"
    __table_args__ = (
        UniqueConstraint("registration_id", "option_id", name="uq_addon_selection"),
        CheckConstraint("quantity >= 1", name="chk_addon_selection_qty"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    registration_id: Mapped[int] = mapped_column(ForeignKey("registrations.id"), nullable=False)
    option_id: Mapped[int] = mapped_column(ForeignKey("add_on_options.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    line_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class DiscountCode(Base):
    __tablename__ = "discount_codes"
    __table_args__ = (
        CheckConstraint("percent_off BETWEEN 1 AND 100", name="chk_discount_percent"),
        Index("idx_discount_edition_code", "edition_id", "code"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(ForeignKey("event_editions.id"), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    percent_off: Mapped[int] = mapped_column(Integer, nullable=False)
    max_redemptions: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class DiscountRedemption(Base):
    __tablename__ = "discount_redemptions"
    __table_args__ = (
        UniqueConstraint("registration_id", name="uq_redemption_registration"),
        Index("idx_redemption_code", "discount_code_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    registration_id: Mapped[int] = mapped_column(ForeignKey("registrations.id"), nullable=False)
    discount_code_id: Mapped[int] = mapped_column(ForeignKey("discount_codes.id"), nullable=False)
    discount_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class GroupDiscountRule(Base):
    __tablename__ = "group_discount_rules"
    __table_args__ = (UniqueConstraint("edition_id", "min_participants", name="uq_group_rule_threshold"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(ForeignKey("event_editions.id"), nullable=False)
    min_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    percent_off: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class GroupRegistrationBatch(Base):
    __tablename__ = "group_registration_batches"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(ForeignKey("event_editions.id"), nullable=False)
    distance_id: Mapped[Optional[int]] = mapped_column(ForeignKey("event_distances.id"), nullable=True)
    created_by_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payment_responsibility: Mapped[PaymentResponsibility] = mapped_column(
        _enum(PaymentResponsibility), nullable=False, default=PaymentResponsibility.SELF_PAY
    )
    status: Mapped[BatchStatus] = mapped_column(_enum(BatchStatus), nullable=False, default=BatchStatus.PENDING)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class GroupRegistrationBatchRow(Base):
    __tablename__ = "group_registration_batch_rows"
    __table_args__ = (
        UniqueConstraint("batch_id", "row_index", name="uq_batch_row_index"),
        Index("idx_batch_rows_registration", "created_registration_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("group_registration_batches.id"), nullable=False)
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    raw_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    validation_errors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_registration_id: Mapped[Optional[int]] = mapped_column(ForeignKey("registrations.id"), nullable=True)


class RegistrationInvite(Base):
    __tablename__ = "registration_invites"
    __table_args__ = (
        UniqueConstraint("token_hash", name="uq_invites_token_hash"),
        Index("idx_invites_edition_email", "edition_id", "email_normalized"),
        Index("idx_invites_registration", "registration_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(ForeignKey("event_editions.id"), nullable=False)
    batch_id: Mapped[int] = mapped_column(ForeignKey("group_registration_batches.id"), nullable=False)
    batch_row_id: Mapped[int] = mapped_column(ForeignKey("group_registration_batch_rows.id"), nullable=False)
    registration_id: Mapped[int] = mapped_column(ForeignKey("registrations.id"), nullable=False)
    created_by_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    email_normalized: Mapped[str] = mapped_column(String(255), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[InviteStatus] = mapped_column(_enum(InviteStatus), nullable=False, default=InviteStatus.DRAFT)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    claimed_by_user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
