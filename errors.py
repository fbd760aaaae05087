from typing import Any, List, Optional

from fastapi.responses import JSONResponse


class BookingServiceError(Exception):
    """Base class for every error the booking service raises on purpose."""

    http_status = 500
    public_error = "Internal Server Error"

    def details(self) -> Any:
        return str(self)


class ValidationError(BookingServiceError):
    """
    Caller supplied data is incomplete or malformed.
    `errors` holds every violation found, `fields` the offending field names.
    """

    http_status = 400
    public_error = "Validation failed"

    def __init__(self, errors: List[str], fields: Optional[List[str]] = None):
        self.errors = list(errors)
        self.fields = list(fields or [])
        super().__init__("; ".join(self.errors) or "Validation failed")

    def details(self) -> Any:
        return self.errors


class InvalidAmountError(ValidationError):
    def __init__(self, amount: Any):
        self.amount = amount
        super().__init__(
            [f"Invalid amount: {amount!r}. Amount must be a positive number"],
            fields=["amount"],
        )


class ConfigurationError(BookingServiceError):
    """A required secret or setting is missing."""

    public_error = "Server misconfigured"

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        self.missing = list(missing or [])
        super().__init__(message)


class GatewayError(BookingServiceError):
    """The payment gateway rejected or failed a call."""

    public_error = "Payment gateway error"

    def __init__(self, description: str, code: Optional[str] = None,
                 status_code: Optional[int] = None, details: Any = None):
        self.description = description
        self.code = code
        self.status_code = status_code
        self.raw = details
        super().__init__(description)

    def details(self) -> Any:
        out = {"code": self.code, "description": self.description}
        if self.status_code is not None:
            out["statusCode"] = self.status_code
        return out


class StoreError(BookingServiceError):
    """The booking record store failed a call."""

    public_error = "Booking store error"

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        self.message = message
        self.code = code
        self.status = status
        super().__init__(message)

    def details(self) -> Any:
        return {"code": self.code, "status": self.status, "message": self.message}


class BookingCreationError(BookingServiceError):
    """The pending booking record could not be created; no order was attempted."""

    public_error = "Failed to create booking"

    def __init__(self, cause: StoreError):
        self.cause = cause
        super().__init__(f"Failed to create booking: {cause.message}")

    def details(self) -> Any:
        return self.cause.details()


def error_response(status_code: int, error: str, details: Any = None, **extra) -> JSONResponse:
    body = {"success": False, "error": error}
    if details is not None:
        body["details"] = details
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=body)
