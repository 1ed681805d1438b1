# portal/exceptions.py
from __future__ import annotations


class PortalError(Exception):
    """Base exception for all portal errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, detail: str | None = None) -> None:
        self.message = message
        self.detail = detail
        super().__init__(message)


class PaymentError(PortalError):
    status_code = 502
    error_code = "PAYMENT_PROVIDER_ERROR"


class BillingDisabledError(PortalError):
    status_code = 503
    error_code = "BILLING_DISABLED"


class ConfigurationError(PortalError):
    status_code = 500
    error_code = "NOT_CONFIGURED"
