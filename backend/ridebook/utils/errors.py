"""Domain exceptions.

Lifecycle code raises these; the API layer converts them with
``to_http_exception`` so handlers stay free of status-code logic.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a referenced booking, invoice or driver does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    status_code = status.HTTP_409_CONFLICT


class InvalidStateTransition(ConflictException):
    """Raised when a booking cannot move from its current status."""


class InvoiceCreationFailure(DomainException):
    """Raised when no unique invoice number could be inserted within budget."""


class BookingCreationError(DomainException):
    """Raised by create_booking after the booking row has been rolled back."""
