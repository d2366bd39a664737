"""Domain error codes for the registration engine.

Every error carries a stable machine-readable ``code`` and a user-safe
``message``. Routers map the error class to an HTTP status.
"""

from enum import StrEnum


class ErrorCode(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SOLD_OUT = "SOLD_OUT"
    REGISTRATION_EXPIRED = "REGISTRATION_EXPIRED"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    MISSING_REGISTRANT = "MISSING_REGISTRANT"
    MISSING_WAIVER = "MISSING_WAIVER"
    MISSING_REQUIRED_ANSWER = "MISSING_REQUIRED_ANSWER"
    INVALID_CODE = "INVALID_CODE"
    CODE_NOT_STARTED = "CODE_NOT_STARTED"
    CODE_EXPIRED = "CODE_EXPIRED"
    DISCOUNT_ALREADY_APPLIED = "DISCOUNT_ALREADY_APPLIED"
    NO_DISCOUNT = "NO_DISCOUNT"
    MAX_REDEMPTIONS = "MAX_REDEMPTIONS"
    NOT_PUBLISHED = "NOT_PUBLISHED"
    REGISTRATION_PAUSED = "REGISTRATION_PAUSED"
    REGISTRATION_NOT_OPEN = "REGISTRATION_NOT_OPEN"
    REGISTRATION_CLOSED = "REGISTRATION_CLOSED"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    HAS_ACTIVE_INVITE = "HAS_ACTIVE_INVITE"
    EXISTING_ACTIVE_INVITE = "EXISTING_ACTIVE_INVITE"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    INVITE_CANCELLED = "INVITE_CANCELLED"
    INVITE_EXPIRED = "INVITE_EXPIRED"
    INVITE_INVALID = "INVITE_INVALID"
    EMAIL_MISMATCH = "EMAIL_MISMATCH"
    DOB_MISMATCH = "DOB_MISMATCH"
    DOB_REQUIRED = "DOB_REQUIRED"
    DEMO_PAYMENTS_DISABLED = "DEMO_PAYMENTS_DISABLED"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    default_code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFoundError(DomainError):
    default_code = ErrorCode.NOT_FOUND


class ForbiddenError(DomainError):
    default_code = ErrorCode.FORBIDDEN


class ValidationError(DomainError):
    default_code = ErrorCode.VALIDATION_ERROR


class SoldOutError(DomainError):
    default_code = ErrorCode.SOLD_OUT


class RegistrationExpiredError(DomainError):
    default_code = ErrorCode.REGISTRATION_EXPIRED

    def __init__(self, message: str = "Registration expired. Please start again.") -> None:
        super().__init__(message)


class InvalidStateTransitionError(DomainError):
    """A guarded status update matched no row: another transition won."""

    default_code = ErrorCode.INVALID_STATE_TRANSITION


class MissingPrerequisiteError(DomainError):
    default_code = ErrorCode.MISSING_REGISTRANT


class DiscountInvalidError(DomainError):
    default_code = ErrorCode.INVALID_CODE


class DiscountAlreadyAppliedError(DomainError):
    default_code = ErrorCode.DISCOUNT_ALREADY_APPLIED

    def __init__(self, message: str = "A discount code is already applied to this registration") -> None:
        super().__init__(message)


class MaxRedemptionsError(DomainError):
    default_code = ErrorCode.MAX_REDEMPTIONS

    def __init__(self, message: str = "This discount code has reached its maximum uses") -> None:
        super().__init__(message)


class EventNotAvailableError(DomainError):
    default_code = ErrorCode.NOT_PUBLISHED


class AlreadyRegisteredError(DomainError):
    default_code = ErrorCode.ALREADY_REGISTERED


class InviteError(DomainError):
    default_code = ErrorCode.INVITE_INVALID
