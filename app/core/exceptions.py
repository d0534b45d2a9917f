"""
Custom application exceptions
"""

from typing import Optional, Dict, Any


class StayNestException(Exception):
    """Base exception for StayNest application"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(StayNestException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_ERROR",
            status_code=401,
            details=details
        )


class InvalidSignatureError(AuthenticationError):
    """Gateway notification failed signature verification"""

    def __init__(self):
        super().__init__(message="Invalid signature")
        self.code = "INVALID_SIGNATURE"


class AuthorizationError(StayNestException):
    """Authorization related errors"""

    def __init__(self, message: str = "Not authorized", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_FORBIDDEN",
            status_code=403,
            details=details
        )


class NotFoundError(StayNestException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404
        )


class ValidationError(StayNestException):
    """Validation errors"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class ConflictError(StayNestException):
    """Resource conflict errors"""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="CONFLICT",
            status_code=409,
            details=details
        )


class BookingError(StayNestException):
    """Booking related errors"""

    def __init__(self, message: str, code: str = "BOOKING_ERROR", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=400,
            details=details
        )


class GatewayRejectedError(StayNestException):
    """Gateway answered but refused to create a checkout"""

    def __init__(self, message: str = "Payment failed, please try again", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="PAYMENT_GATEWAY_REJECTED",
            status_code=502,
            details=details
        )


class ConcurrencyError(StayNestException):
    """Concurrency conflict error"""

    def __init__(self, message: str = "Resource was modified by another process"):
        super().__init__(
            message=message,
            code="CONCURRENCY_ERROR",
            status_code=409
        )


class LockAcquisitionError(StayNestException):
    """Failed to acquire lock error"""

    def __init__(self, resource: str):
        super().__init__(
            message=f"Failed to acquire lock for resource: {resource}",
            code="LOCK_FAILED",
            status_code=409,
            details={"resource": resource}
        )


class ExternalServiceError(StayNestException):
    """External service error"""

    def __init__(self, service: str, message: str = None):
        super().__init__(
            message=message or f"External service {service} is unavailable",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=503,
            details={"service": service}
        )


class GatewayTransportError(ExternalServiceError):
    """Payment gateway unreachable or answered with an unreadable body"""

    def __init__(self, message: str = "Payment gateway is unavailable"):
        super().__init__(service="payment_gateway", message=message)


class GatewayTimeoutError(GatewayTransportError):
    """Payment gateway did not answer within the configured timeout"""

    def __init__(self, message: str = "Payment gateway timed out"):
        super().__init__(message=message)


class StoreError(StayNestException):
    """Record store failure while processing a request"""

    def __init__(self, message: str = "Record store failure"):
        super().__init__(
            message=message,
            code="STORE_ERROR",
            status_code=500
        )
