"""Domain error to HTTP response mapping."""

from fastapi import HTTPException, status

from ordercore.domain.exceptions import DomainError

ERROR_STATUS_CODES: dict[str, int] = {
    "ORDER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "UPSELL_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
    "ALREADY_CANCELLED": status.HTTP_409_CONFLICT,
    "OFFER_EXPIRED": status.HTTP_410_GONE,
    "SYNC_UNCONFIRMED": status.HTTP_502_BAD_GATEWAY,
    "EXTERNAL_UNAVAILABLE": status.HTTP_502_BAD_GATEWAY,
    "VALIDATION_FAILED": status.HTTP_400_BAD_REQUEST,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
}


def status_code_for(error: DomainError) -> int:
    return ERROR_STATUS_CODES.get(error.error_code, status.HTTP_400_BAD_REQUEST)


def to_http_exception(error: DomainError) -> HTTPException:
    """Convert a domain error into an HTTPException with the standard body."""
    return HTTPException(
        status_code=status_code_for(error),
        detail={
            "error_code": error.error_code,
            "message": error.message,
            "details": error.details,
        },
    )
