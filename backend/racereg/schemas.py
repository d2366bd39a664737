from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer

from .models import (
    AddOnSelection,
    BatchStatus,
    DiscountCode,
    GroupRegistrationBatchRow,
    PaymentResponsibility,
    PricingTier,
    Registration,
    RegistrationAnswer,
    RegistrationStatus,
    SignatureType,
    WaiverAcceptance,
)
from .utils.time import utc_naive_to_aware


def _ser_optional_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return utc_naive_to_aware(dt).isoformat()


class RegistrationRead(BaseModel):
    registration_id: int
    edition_id: int
    distance_id: int
    buyer_user_id: Optional[int]
    status: RegistrationStatus
    payment_responsibility: PaymentResponsibility
    base_price_cents: int
    fees_cents: int
    tax_cents: int
    total_cents: int
    expires_at: Optional[datetime]

    @field_serializer("expires_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _ser_optional_datetime(dt)

    @classmethod
    def from_db(cls, *, registration: Registration) -> "RegistrationRead":
        return cls(
            registration_id=registration.id,
            edition_id=registration.edition_id,
            distance_id=registration.distance_id,
            buyer_user_id=registration.buyer_user_id,
            status=registration.status,
            payment_responsibility=registration.payment_responsibility,
            base_price_cents=registration.base_price_cents,
            fees_cents=registration.fees_cents,
            tax_cents=registration.tax_cents,
            total_cents=registration.total_cents,
            expires_at=registration.expires_at,
        )


class RegistrantSubmit(BaseModel):
    profile: dict[str, Any] = Field(default_factory=dict)
    division: Optional[str] = Field(default=None, max_length=20)
    gender_identity: Optional[str] = Field(default=None, max_length=50)


class WaiverAccept(BaseModel):
    waiver_id: int = Field(ge=1)
    signature_type: SignatureType = SignatureType.CHECKBOX
    signature_value: Optional[str] = Field(default=None, max_length=255)


class WaiverAcceptanceRead(BaseModel):
    registration_id: int
    waiver_id: int
    waiver_version_hash: str
    signature_type: SignatureType
    accepted_at: datetime

    @field_serializer("accepted_at")
    def _ser_datetime(self, dt: datetime) -> Optional[str]:
        return _ser_optional_datetime(dt)

    @classmethod
    def from_db(cls, *, acceptance: WaiverAcceptance) -> "WaiverAcceptanceRead":
        return cls(
            registration_id=acceptance.registration_id,
            waiver_id=acceptance.waiver_id,
            waiver_version_hash=acceptance.waiver_version_hash,
            signature_type=acceptance.signature_type,
            accepted_at=acceptance.accepted_at,
        )


class AnswerIn(BaseModel):
    question_id: int = Field(ge=1)
    value: Optional[str] = Field(default=None, max_length=2000)


class AnswersSubmit(BaseModel):
    answers: list[AnswerIn] = Field(default_factory=list, max_length=100)


class AnswerRead(BaseModel):
    question_id: int
    value: Optional[str]

    @classmethod
    def from_db(cls, *, answer: RegistrationAnswer) -> "AnswerRead":
        return cls(question_id=answer.question_id, value=answer.value)


class AddOnChoiceIn(BaseModel):
    option_id: int = Field(ge=1)
    quantity: int = Field(ge=0)


class AddOnSubmit(BaseModel):
    selections: list[AddOnChoiceIn] = Field(default_factory=list)


class AddOnSelectionRead(BaseModel):
    option_id: int
    quantity: int
    line_total_cents: int

    @classmethod
    def from_db(cls, *, selection: AddOnSelection) -> "AddOnSelectionRead":
        return cls(
            option_id=selection.option_id,
            quantity=selection.quantity,
            line_total_cents=selection.line_total_cents,
        )


class AddOnsRead(BaseModel):
    registration: RegistrationRead
    selections: list[AddOnSelectionRead]


class DiscountApply(BaseModel):
    code: str = Field(min_length=1, max_length=50)


class DiscountAppliedRead(BaseModel):
    registration: RegistrationRead
    discount_amount_cents: int


class DiscountValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    base_price_cents: int = Field(ge=0)


class DiscountCodeRead(BaseModel):
    id: int
    edition_id: int
    code: str
    name: Optional[str]
    percent_off: int
    max_redemptions: Optional[int]
    current_redemptions: int
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    is_active: bool

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _ser_optional_datetime(dt)

    @classmethod
    def from_db(cls, *, code: DiscountCode, current_redemptions: int) -> "DiscountCodeRead":
        return cls(
            id=code.id,
            edition_id=code.edition_id,
            code=code.code,
            name=code.name,
            percent_off=code.percent_off,
            max_redemptions=code.max_redemptions,
            current_redemptions=current_redemptions,
            starts_at=code.starts_at,
            ends_at=code.ends_at,
            is_active=code.is_active,
        )


class DiscountValidationRead(BaseModel):
    discount_code: DiscountCodeRead
    discount_amount_cents: int


class PricingTierRead(BaseModel):
    tier_id: int
    label: Optional[str]
    price_cents: int
    currency: str
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    sort_order: int

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _ser_optional_datetime(dt)

    @classmethod
    def from_db(cls, *, tier: PricingTier) -> "PricingTierRead":
        return cls(
            tier_id=tier.id,
            label=tier.label,
            price_cents=tier.price_cents,
            currency=tier.currency,
            starts_at=tier.starts_at,
            ends_at=tier.ends_at,
            sort_order=tier.sort_order,
        )


class PricingRead(BaseModel):
    distance_id: int
    price_cents: int
    current_tier: Optional[PricingTierRead]
    next_tier: Optional[PricingTierRead]
    tiers: list[PricingTierRead]


class AvailabilityRead(BaseModel):
    distance_id: int
    edition_id: int
    scope: Optional[str]
    capacity: Optional[int]
    active_count: int
    remaining: Optional[int]


class RosterUpload(BaseModel):
    csv_text: str = Field(min_length=1)


class BatchRowRead(BaseModel):
    row_index: int
    errors: list[str]
    created_registration_id: Optional[int]

    @classmethod
    def from_db(cls, *, row: GroupRegistrationBatchRow) -> "BatchRowRead":
        return cls(
            row_index=row.row_index,
            errors=list(row.validation_errors or []),
            created_registration_id=row.created_registration_id,
        )


class RosterUploadRead(BaseModel):
    batch_id: int
    status: BatchStatus
    error_count: int
    rows: list[BatchRowRead]


class BatchReserveRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, le=250)


class IssuedInviteRead(BaseModel):
    row_index: int
    email: str
    registration_id: int
    token: str


class BatchReserveRead(BaseModel):
    batch_id: int
    processed: int
    succeeded: int
    failed: int
    remaining: int
    group_discount_percent_off: Optional[int]
    invites: list[IssuedInviteRead]


class InviteClaim(BaseModel):
    token: str = Field(min_length=16, max_length=128)
    date_of_birth: Optional[date] = None


class InviteClaimRead(BaseModel):
    invite_id: int
    registration: RegistrationRead


class CleanupRead(BaseModel):
    cancelled: int
    expired_invites: int
