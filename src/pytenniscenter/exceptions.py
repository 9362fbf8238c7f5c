"""Library exceptions."""

from __future__ import annotations


class PyTennisCenterError(Exception):
    """Base exception for the library."""

    error_type = "unknown"
    default_error_code: str | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: str | None = None,
        detail: str | None = None,
        user_message: str | None = None,
    ) -> None:
        text = message or detail or ""
        super().__init__(text)
        self.error_code = error_code or self.default_error_code
        self.detail = detail or text
        self.user_message = user_message


class AuthError(PyTennisCenterError):
    """Raised when a session cannot be acquired or refreshed."""

    error_type = "auth"
    default_error_code = "auth_error"


class NetworkError(PyTennisCenterError):
    """Raised on transport failures and non-2xx responses."""

    error_type = "network"
    default_error_code = "network_error"


class ValidationError(PyTennisCenterError):
    """Raised when inputs fail validation."""

    error_type = "validation"
    default_error_code = "validation_error"


class ProviderError(PyTennisCenterError):
    """Raised when the portal returns something that cannot be interpreted."""

    error_type = "provider"
    default_error_code = "provider_error"


class AutomationStepError(PyTennisCenterError):
    """Raised when a named booking wizard step cannot complete."""

    error_type = "automation"
    default_error_code = "automation_step"

    def __init__(self, step: str, message: str | None = None, **kwargs: str | None) -> None:
        super().__init__(message or f"Booking step {step} failed.", **kwargs)
        self.step = step


class InconclusiveResultError(PyTennisCenterError):
    """Raised when the confirmation page shows neither success nor failure."""

    error_type = "automation"
    default_error_code = "inconclusive"


class BookingInProgressError(PyTennisCenterError):
    """Raised when a booking is requested while another one is running."""

    error_type = "automation"
    default_error_code = "booking_in_progress"
