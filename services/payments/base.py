# services/payments/base.py
"""
Event model for gateway notifications + small parsing helpers shared by the
webhook processor and the synchronous flows.

Two body shapes are normalised into one WebhookEvent:
- flat:     {"reference", "status", "amountInCents", "currency", "signature",
             "transaction_id", "customerData": {"id"}, "paymentMethodType"}
- envelope: Wompi's {"event", "data": {"transaction": {...}},
             "signature": {"properties", "checksum"}, "timestamp"}
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from services.payments.errors import ValidationError

PAYMENT_STATUSES = ("PENDING", "APPROVED", "DECLINED", "VOIDED", "ERROR")
TERMINAL_STATUSES = frozenset({"APPROVED", "DECLINED", "VOIDED", "ERROR"})


@dataclass(frozen=True)
class AcceptanceTokens:
    presigned_acceptance: str
    presigned_personal_data_auth: str


@dataclass
class WebhookEvent:
    reference: str
    status: str                   # one of PAYMENT_STATUSES
    amount_in_cents: int
    currency: str
    transaction_id: Optional[str]
    customer_id: Optional[int]
    payment_method_type: str
    payment_date: Optional[datetime]
    raw: Dict[str, Any]
    signature: Optional[str] = None       # flat form only
    checksum: Optional[str] = None        # envelope form only
    envelope: bool = False
    tags: tuple = field(default_factory=tuple)

    @property
    def idempotency_key(self) -> str:
        # a status change on the same transaction is a distinct event
        return f"{self.reference}:{self.transaction_id or '-'}:{self.status}"


def parse_amount_in_cents(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("amountInCents must be an integer")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError("amountInCents must be an integer")
    if value <= 0:
        raise ValidationError("amountInCents must be positive")
    return value


def parse_status(value: Any, default: str | None = None) -> str:
    if value in (None, "") and default:
        return default
    status = str(value or "").strip().upper()
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"Unknown payment status: {value!r}")
    return status


def parse_customer_id(value: Any) -> Optional[int]:
    # mirrors Number(x) || null: anything non-numeric (or 0) means "no customer"
    try:
        cid = int(value)
    except (TypeError, ValueError):
        return None
    return cid or None


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Unparseable date: {value!r}")


def require_fields(payload: Any, fields: tuple[str, ...]) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError()
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError("Missing field(s): " + ", ".join(missing))
    return payload


def _event_from_flat(payload: Dict[str, Any]) -> WebhookEvent:
    require_fields(payload, ("reference", "status", "amountInCents",
                             "currency", "signature"))
    customer = payload.get("customerData") or {}
    method = payload.get("paymentMethodType")
    return WebhookEvent(
        reference=str(payload["reference"]),
        status=parse_status(payload["status"]),
        amount_in_cents=parse_amount_in_cents(payload["amountInCents"]),
        currency=str(payload["currency"]).upper(),
        transaction_id=(str(payload["transaction_id"])
                        if payload.get("transaction_id") else None),
        customer_id=parse_customer_id(
            customer.get("id") if isinstance(customer, dict) else None),
        payment_method_type=method.lower() if method else "unknown",
        payment_date=parse_timestamp(payload.get("payment_date")),
        raw=payload,
        signature=str(payload["signature"]),
    )


def _event_from_envelope(payload: Dict[str, Any]) -> WebhookEvent:
    data = payload.get("data") or {}
    tx = data.get("transaction") if isinstance(data, dict) else None
    sig = payload.get("signature")
    if not isinstance(tx, dict) or not isinstance(sig, dict):
        raise ValidationError("Malformed event envelope")
    require_fields(tx, ("id", "reference", "status",
                        "amount_in_cents", "currency"))
    if not sig.get("checksum") or payload.get("timestamp") in (None, ""):
        raise ValidationError("Event envelope without checksum or timestamp")
    method = tx.get("payment_method_type")
    return WebhookEvent(
        reference=str(tx["reference"]),
        status=parse_status(tx["status"]),
        amount_in_cents=parse_amount_in_cents(tx["amount_in_cents"]),
        currency=str(tx["currency"]).upper(),
        transaction_id=str(tx["id"]),
        customer_id=parse_customer_id((tx.get("customer_data") or {}).get("id")),
        payment_method_type=method.lower() if method else "unknown",
        payment_date=parse_timestamp(tx.get("finalized_at") or tx.get("created_at")),
        raw=payload,
        checksum=str(sig["checksum"]),
        envelope=True,
    )


def parse_webhook_payload(payload: Any) -> WebhookEvent:
    """Raise ValidationError on anything that is not a well-formed event."""
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("Empty or non-JSON webhook body")
    if "data" in payload and isinstance(payload.get("signature"), dict):
        return _event_from_envelope(payload)
    return _event_from_flat(payload)
