# models/subscriptions_store.py
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.base import session_scope
from models.schema import PaymentRecord, SubscriptionRecord
from services.payments.errors import ValidationError

_COLUMNS = ("id", "payment_id", "user_id", "plan_id", "frequency", "currency", "status",
            "payment_source_id", "payment_source_type", "customer_email",
            "activated_at", "created_at", "updated_at")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def subscription_to_dict(sub: SubscriptionRecord) -> dict:
    return {c: getattr(sub, c) for c in _COLUMNS}


def _for_user(s: Session, user_id: int) -> Optional[SubscriptionRecord]:
    return s.execute(select(SubscriptionRecord).where(
        SubscriptionRecord.user_id == user_id)).scalars().first()


def get_subscription_for_user(user_id: int) -> Optional[dict]:
    with session_scope() as s:
        sub = _for_user(s, user_id)
        return subscription_to_dict(sub) if sub else None


def link_payment(s: Session, payment: PaymentRecord, extra: Dict[str, Any]) -> SubscriptionRecord:
    """
    Point the sponsor's subscription at `payment`, creating the subscription
    on first use. Payment-source fields are only overwritten when given; the
    source id must already be encrypted.
    """
    if payment.sponsor_id is None:
        raise ValidationError("A subscription payment needs a sponsor")
    now = _now()
    sub = _for_user(s, payment.sponsor_id)
    if sub is None:
        sub = SubscriptionRecord(
            payment_id=payment.reference,
            user_id=payment.sponsor_id,
            plan_id=extra.get("plan_id") or payment.plan_id,
            frequency=extra.get("frequency"),
            currency=extra.get("currency") or payment.currency,
            status="pending",
            created_at=now,
        )
        s.add(sub)
    else:
        sub.payment_id = payment.reference
        for col in ("plan_id", "frequency", "currency"):
            if extra.get(col):
                setattr(sub, col, extra[col])

    for col in ("payment_source_id", "payment_source_type", "customer_email"):
        if extra.get(col):
            setattr(sub, col, extra[col])
    sub.updated_at = now
    s.flush()
    return sub


def activate_for_payment(s: Session, reference: str) -> Optional[SubscriptionRecord]:
    sub = s.execute(select(SubscriptionRecord).where(
        SubscriptionRecord.payment_id == reference)).scalars().first()
    if sub is None:
        return None
    if sub.status != "active":
        sub.status = "active"
        sub.activated_at = sub.activated_at or _now()
        sub.updated_at = _now()
        s.flush()
    return sub


def apply_upgrade(s: Session, payment: PaymentRecord) -> Optional[SubscriptionRecord]:
    """Move the sponsor's subscription to the plan bought by `payment`."""
    if payment.sponsor_id is None:
        return None
    sub = _for_user(s, payment.sponsor_id)
    if sub is None:
        return None
    if payment.plan_id:
        sub.plan_id = payment.plan_id
    sub.payment_id = payment.reference
    sub.status = "active"
    sub.activated_at = sub.activated_at or _now()
    sub.updated_at = _now()
    s.flush()
    return sub
