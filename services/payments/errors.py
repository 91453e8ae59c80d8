# services/payments/errors.py
"""
Error taxonomy for the payments flows. Every error carries the HTTP status
the blueprint answers with; webhooks override upstream/transport statuses to
500 so the gateway retries delivery.
"""

from __future__ import annotations
from typing import Any


class PaymentError(Exception):
    http_status = 500
    message = "Internal server error."

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.message)
        self.detail = detail or self.message


class ValidationError(PaymentError):
    http_status = 400
    message = "Incomplete or malformed request data."


class SignatureMismatchError(PaymentError):
    http_status = 400
    message = "Invalid signature."


class DuplicateEventError(PaymentError):
    """Not a failure: the event (or reference) was already applied."""
    http_status = 200
    message = "Duplicate event."

    def __init__(self, reference: str):
        super().__init__(f"Duplicate event for reference {reference}")
        self.reference = reference


class UpstreamError(PaymentError):
    http_status = 502
    message = "Payment gateway rejected the request."

    def __init__(self, status_code: int, body: Any):
        super().__init__(f"Gateway answered HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class TransportError(PaymentError):
    http_status = 502
    message = "Payment gateway unreachable."


class TransactionError(PaymentError):
    http_status = 500
    message = "Database transaction failed."


class CryptoError(PaymentError):
    http_status = 500
    message = "Encrypted token is malformed or was tampered with."
