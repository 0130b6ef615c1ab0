# backend/spacebook/core/exceptions.py
"""
Domain-specific exceptions for the Spacebook booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


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
        """Convert to an HTTPException carrying the subclass status code."""
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
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when the caller is not a party allowed to perform the action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised when a booking overlaps an active booking of the same property."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class InvalidStateTransitionException(ConflictException):
    """Raised when a booking transition is not allowed from its current status."""

    def __init__(self, current: str, target: str, booking_id: Optional[str] = None):
        super().__init__(
            message=f"Cannot move booking from {current} to {target}",
            code="INVALID_STATE_TRANSITION",
            details={"current": current, "target": target, "booking_id": booking_id},
        )


class InvalidPaymentTransitionException(ConflictException):
    """Raised when a booking's payment status would move backwards."""

    def __init__(self, current: str, target: str, booking_id: Optional[str] = None):
        super().__init__(
            message=f"Cannot move payment from {current} to {target}",
            code="INVALID_PAYMENT_TRANSITION",
            details={"current": current, "target": target, "booking_id": booking_id},
        )


class NoPricingConfiguredException(BusinessRuleException):
    """Raised when a property has no rate that applies to the requested window."""

    def __init__(self, property_id: Optional[str] = None):
        super().__init__(
            message="No pricing is configured for this space",
            code="NO_PRICING_CONFIGURED",
            details={"property_id": property_id} if property_id else {},
        )


class PaymentIntegrityException(DomainException):
    """
    Raised when a captured amount does not match the stored booking total.

    Fatal for the operation: the booking is never finalized and operators
    are expected to investigate.
    """

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="PAYMENT_INTEGRITY", details=details)


class GatewayException(DomainException):
    """Raised when the payment gateway rejects or fails a request."""

    status_code = status.HTTP_502_BAD_GATEWAY


class WebhookSignatureException(DomainException):
    """Raised when a webhook payload fails signature verification."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message=message, code="INVALID_SIGNATURE")


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
