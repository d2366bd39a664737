from fastapi import HTTPException, status

from ..domain.errors import (
    AlreadyRegisteredError,
    DiscountAlreadyAppliedError,
    DiscountInvalidError,
    DomainError,
    ErrorCode,
    EventNotAvailableError,
    ForbiddenError,
    InvalidStateTransitionError,
    InviteError,
    MaxRedemptionsError,
    MissingPrerequisiteError,
    NotFoundError,
    RegistrationExpiredError,
    SoldOutError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[DomainError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (SoldOutError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (AlreadyRegisteredError, status.HTTP_409_CONFLICT),
    (DiscountAlreadyAppliedError, status.HTTP_409_CONFLICT),
    (MaxRedemptionsError, status.HTTP_409_CONFLICT),
    (RegistrationExpiredError, status.HTTP_410_GONE),
    (MissingPrerequisiteError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (DiscountInvalidError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (EventNotAvailableError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)

_INVITE_STATUS = {
    ErrorCode.ALREADY_CLAIMED: status.HTTP_409_CONFLICT,
    ErrorCode.INVITE_CANCELLED: status.HTTP_410_GONE,
    ErrorCode.INVITE_EXPIRED: status.HTTP_410_GONE,
}


def status_for(exc: DomainError) -> int:
    if isinstance(exc, InviteError):
        return _INVITE_STATUS.get(exc.code, status.HTTP_422_UNPROCESSABLE_ENTITY)
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def to_http_exception(exc: DomainError) -> HTTPException:
    return HTTPException(
        status_code=status_for(exc),
        detail={"code": exc.code.value, "message": exc.message},
    )


def audit_failed() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")
