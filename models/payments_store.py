# models/payments_store.py (SQLAlchemy)
"""
Payment ledger.

A PaymentRecord is keyed by its gateway `reference`; dependents (donation,
subscription) point at that reference and are always written in the same
transaction as the payment. Status only moves forward: PENDING may become
anything, terminal statuses never change.
"""
from __future__ import annotations
import json
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.base import session_scope
from models.schema import DonationRecord, PaymentRecord, WebhookEventRecord
from models import subscriptions_store
from services.metrics import LEDGER_WRITES
from services.payments.base import TERMINAL_STATUSES
from services.payments.errors import DuplicateEventError, TransactionError, ValidationError

_PAYMENT_COLUMNS = ("reference", "sponsor_id", "user_id", "plan_id", "amount", "currency",
                    "payment_date", "transaction_id", "payment_status", "payment_method",
                    "created_at", "updated_at")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / Decimal(100)).quantize(Decimal("0.01"))


def payment_to_dict(p: PaymentRecord) -> dict:
    return {c: getattr(p, c) for c in _PAYMENT_COLUMNS}


def donation_to_dict(d: DonationRecord) -> dict:
    return {c: getattr(d, c) for c in ("id", "payment_id", "message", "amount",
                                       "camper_id", "sponsor_id", "created_at")}


def _payment_exists(reference: str) -> bool:
    with session_scope() as s:
        return s.execute(select(PaymentRecord.id).where(
            PaymentRecord.reference == reference)).first() is not None


@contextmanager
def ledger_transaction(reference: str | None = None, kind: str = "payment"):
    """
    session_scope() with ledger error translation. A unique-constraint hit on
    an already committed reference is a DuplicateEventError (a concurrent
    delivery won the race); any other database failure is a TransactionError.
    The session is rolled back and closed before either is raised.
    """
    try:
        with session_scope() as s:
            yield s
    except IntegrityError as exc:
        if reference and _payment_exists(reference):
            LEDGER_WRITES.labels(kind=kind, outcome="duplicate").inc()
            raise DuplicateEventError(reference) from exc
        LEDGER_WRITES.labels(kind=kind, outcome="error").inc()
        raise TransactionError(f"{kind}: integrity violation") from exc
    except SQLAlchemyError as exc:
        LEDGER_WRITES.labels(kind=kind, outcome="error").inc()
        raise TransactionError(f"{kind}: {exc.__class__.__name__}") from exc
    LEDGER_WRITES.labels(kind=kind, outcome="ok").inc()


def get_payment(reference: str) -> Optional[dict]:
    if not reference:
        return None
    with session_scope() as s:
        p = s.execute(select(PaymentRecord).where(
            PaymentRecord.reference == reference)).scalars().first()
        return payment_to_dict(p) if p else None


def get_donation(reference: str) -> Optional[dict]:
    with session_scope() as s:
        d = s.execute(select(DonationRecord).where(
            DonationRecord.payment_id == reference)).scalars().first()
        return donation_to_dict(d) if d else None


def _new_payment(data: Dict[str, Any]) -> PaymentRecord:
    if not data.get("reference") or not data.get("currency"):
        raise ValidationError("reference and currency are required")
    now = _now()
    return PaymentRecord(
        reference=data["reference"],
        sponsor_id=data.get("sponsor_id"),
        user_id=data.get("user_id"),
        plan_id=data.get("plan_id"),
        amount=data["amount"] if data.get("amount") is not None else Decimal("0.00"),
        currency=data["currency"],
        payment_date=data.get("payment_date"),
        transaction_id=data.get("transaction_id"),
        payment_status=data.get("payment_status") or "PENDING",
        payment_method=data.get("payment_method") or "unknown",
        created_at=now,
        updated_at=now,
    )


def upsert_payment(s: Session, data: Dict[str, Any]) -> PaymentRecord:
    """
    Insert the payment or move an existing one forward. A payment already in
    a terminal status is returned untouched.
    """
    p = s.execute(select(PaymentRecord).where(
        PaymentRecord.reference == data["reference"])).scalars().first()
    if p is None:
        p = _new_payment(data)
        s.add(p)
        s.flush()
        return p

    if p.payment_status in TERMINAL_STATUSES:
        return p
    p.payment_status = data.get("payment_status") or p.payment_status
    # amount and currency come from a signed event and replace placeholders
    for col in ("amount", "currency", "transaction_id", "payment_date", "user_id"):
        if data.get(col) is not None:
            setattr(p, col, data[col])
    if data.get("payment_method") and data["payment_method"] != "unknown":
        p.payment_method = data["payment_method"]
    p.updated_at = _now()
    s.flush()
    return p


def set_payment_status(reference: str, status: str) -> bool:
    """Forward-only status change outside a webhook; False when not applied."""
    with ledger_transaction(kind="status") as s:
        p = s.execute(select(PaymentRecord).where(
            PaymentRecord.reference == reference)).scalars().first()
        if p is None or p.payment_status in TERMINAL_STATUSES:
            return False
        p.payment_status = status
        p.updated_at = _now()
        return True


# ----- dependents ----------------------------------------------------------

def _add_donation(s: Session, payment: PaymentRecord, extra: Dict[str, Any]) -> dict:
    d = DonationRecord(
        payment_id=payment.reference,
        message=extra.get("message") or f"Donation via {payment.payment_method}",
        amount=payment.amount,
        camper_id=extra.get("camper_id"),
        sponsor_id=payment.user_id,
        created_at=_now(),
    )
    s.add(d)
    s.flush()
    return donation_to_dict(d)


def ensure_donation(s: Session, payment: PaymentRecord) -> dict:
    d = s.execute(select(DonationRecord).where(
        DonationRecord.payment_id == payment.reference)).scalars().first()
    if d is not None:
        return donation_to_dict(d)
    return _add_donation(s, payment, {})


def _link_subscription(s: Session, payment: PaymentRecord, extra: Dict[str, Any]) -> dict:
    sub = subscriptions_store.link_payment(s, payment, extra)
    return subscriptions_store.subscription_to_dict(sub)


_DEPENDENT_BUILDERS: Dict[str, Callable[[Session, PaymentRecord, Dict[str, Any]], dict]] = {
    "donation": _add_donation,
    "subscription": _link_subscription,
}


def create_payment_and_dependent(payment_data: Dict[str, Any], dependent_kind: str,
                                 dependent_data: Optional[Dict[str, Any]] = None) -> dict:
    """
    Insert a payment and its dependent record in ONE transaction.

    Returns {"payment": {...}, "dependent": {...}}. Raises
    DuplicateEventError when the reference already exists and
    TransactionError on any other database failure; in both cases nothing was
    committed.
    """
    builder = _DEPENDENT_BUILDERS.get(dependent_kind)
    if builder is None:
        raise ValidationError(f"Unknown dependent kind: {dependent_kind}")

    with ledger_transaction(payment_data.get("reference"), kind=dependent_kind) as s:
        payment = _new_payment(payment_data)
        s.add(payment)
        s.flush()
        dependent = builder(s, payment, dependent_data or {})
        result = {"payment": payment_to_dict(payment), "dependent": dependent}
    return result


# ----- processed-event marker ------------------------------------------------

def is_duplicate_event(idempotency_key: str, reference: str) -> bool:
    """
    True when this delivery was already handled (marker present) or the
    payment it refers to has reached a terminal status.
    """
    with session_scope() as s:
        seen = s.execute(select(WebhookEventRecord.id).where(
            WebhookEventRecord.idempotency_key == idempotency_key)).first()
        if seen:
            return True
        status = s.execute(select(PaymentRecord.payment_status).where(
            PaymentRecord.reference == reference)).scalar()
        return status in TERMINAL_STATUSES


def mark_event_processed(idempotency_key: str, reference: str, status: str,
                         outcome: str, raw_payload: dict) -> bool:
    """Record the marker; False when a concurrent delivery recorded it first."""
    raw_text = json.dumps(raw_payload, ensure_ascii=False,
                          separators=(",", ":"), default=str)
    try:
        with session_scope() as s:
            s.add(WebhookEventRecord(
                idempotency_key=idempotency_key, reference=reference,
                status=status, outcome=outcome, raw=raw_text, received_at=_now(),
            ))
    except IntegrityError:
        return False
    return True
