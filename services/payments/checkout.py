# services/payments/checkout.py
"""
Synchronous payment flows called by the blueprint.

- save_donation: signature is checked before any transaction is opened.
- generate_pay_source: gateway calls first, then ONE local transaction for
  the "sub_" placeholder payment + subscription link. The gateway call
  cannot be undone; if the local write fails the reference is logged and the
  gateway's own webhook for it reconciles later.
- charge_subscription: the only place a stored source id is decrypted.
"""

from __future__ import annotations
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from models import payments_store
from models.subscriptions_store import get_subscription_for_user
from services.metrics import SIGNATURE_FAILURES
from services.payments.base import (
    parse_amount_in_cents, parse_customer_id, parse_status, parse_timestamp, require_fields,
)
from services.payments.errors import (
    DuplicateEventError, SignatureMismatchError, TransactionError, UpstreamError, ValidationError,
)
from services.payments.signature import SignatureVerifier
from services.payments.tokenizer import TokenCipher
from services.payments.wompi_client import WompiClient

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "COP"


def new_reference(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def save_donation(payload: Dict[str, Any], verifier: SignatureVerifier) -> Dict[str, Any]:
    require_fields(payload, ("reference", "amountInCents", "currency", "signature"))
    if not verifier.verify(payload, payload["signature"]):
        SIGNATURE_FAILURES.labels(source="donation").inc()
        logger.warning("Donation signature mismatch for reference %s (possible tampering)",
                       payload["reference"])
        raise SignatureMismatchError()

    cents = parse_amount_in_cents(payload["amountInCents"])
    method = payload.get("paymentMethodType")
    method = method.lower() if method else "unknown"
    customer = payload.get("customerData") or {}
    customer_id = parse_customer_id(customer.get("id") if isinstance(customer, dict) else None)

    data = {
        "reference": str(payload["reference"]),
        "sponsor_id": None,
        "user_id": customer_id,
        "amount": payments_store.from_cents(cents),
        "currency": str(payload["currency"]).upper(),
        "payment_date": parse_timestamp(payload.get("payment_date")) or datetime.now(timezone.utc),
        "transaction_id": payload.get("transaction_id"),
        "payment_status": parse_status(payload.get("status"), default="PENDING"),
        "payment_method": method,
    }
    try:
        res = payments_store.create_payment_and_dependent(
            data, "donation", {"message": f"Donation via {method}"})
    except DuplicateEventError:
        ref = data["reference"]
        logger.info("Donation %s already recorded", ref)
        return {"payment": payments_store.get_payment(ref),
                "donation": payments_store.get_donation(ref), "duplicate": True}
    return {"payment": res["payment"], "donation": res["dependent"], "duplicate": False}


def generate_pay_source(user_id: int, body: Dict[str, Any], client: WompiClient,
                        cipher: TokenCipher) -> Dict[str, Any]:
    body = body or {}
    source_type = body.get("type")
    if not source_type:
        raise ValidationError("Payment source type is not defined")
    raw_cents = body.get("amount_in_cents")
    amount = (payments_store.from_cents(parse_amount_in_cents(raw_cents))
              if raw_cents not in (None, "") else Decimal("0.00"))
    currency = str(body.get("currency") or DEFAULT_CURRENCY).upper()

    tokens = client.fetch_acceptance_tokens()
    logger.info("Creating Wompi payment source for user %s with method %s",
                user_id, source_type)
    source = client.create_payment_source(
        source_type, body.get("token"), body.get("payment_description"),
        body.get("customer_email"), tokens)
    public_source = {**source, "id": cipher.encrypt(str(source["id"]))}

    reference = new_reference("sub")
    try:
        payments_store.create_payment_and_dependent({
            "reference": reference,
            "sponsor_id": user_id,
            "user_id": None,
            "plan_id": body.get("plan_id"),
            "amount": amount,
            "currency": currency,
            "payment_status": "PENDING",
            "payment_method": str(source_type).lower(),
        }, "subscription", {
            "plan_id": body.get("plan_id"),
            "frequency": body.get("frequency"),
            "currency": currency,
            "payment_source_id": public_source["id"],
            "payment_source_type": source_type,
            "customer_email": body.get("customer_email"),
        })
    except TransactionError:
        logger.error("Payment source created at the gateway for user %s but the local write "
                     "failed; reference %s left for webhook reconciliation", user_id, reference)
        raise
    return {"reference": reference, "payment_source": public_source}


def charge_subscription(user_id: int, amount_in_cents: Any, client: WompiClient,
                        cipher: TokenCipher, verifier: SignatureVerifier) -> Dict[str, Any]:
    cents = parse_amount_in_cents(amount_in_cents)
    sub = get_subscription_for_user(user_id)
    if not sub or not sub["payment_source_id"]:
        raise ValidationError("No payment source on file for this user")
    if not sub["customer_email"]:
        raise ValidationError("Subscription has no customer email")

    source_id = cipher.decrypt(sub["payment_source_id"])
    reference = new_reference("sub")
    payments_store.create_payment_and_dependent({
        "reference": reference,
        "sponsor_id": user_id,
        "plan_id": sub["plan_id"],
        "amount": payments_store.from_cents(cents),
        "currency": sub["currency"],
        "payment_status": "PENDING",
        "payment_method": (sub["payment_source_type"] or "unknown").lower(),
    }, "subscription", {})

    try:
        tx = client.create_transaction(
            amount_in_cents=cents,
            currency=sub["currency"],
            reference=reference,
            customer_email=sub["customer_email"],
            payment_source_id=int(source_id) if source_id.isdigit() else source_id,
            signature=verifier.generate(reference, cents, sub["currency"]),
        )
    except UpstreamError:
        # the gateway refused it outright; no webhook will follow
        payments_store.set_payment_status(reference, "ERROR")
        raise
    return {"reference": reference,
            "transaction": {"id": tx.get("id"), "status": tx.get("status")}}


def start_upgrade(user_id: int, plan_id: Any, amount_in_cents: Any,
                  verifier: SignatureVerifier) -> Dict[str, Any]:
    """
    Open a PENDING "upg_" payment carrying the sponsor and the target plan,
    and return what the checkout widget needs to pay it. The approved
    webhook for the reference moves the subscription to `plan_id`.
    """
    if not plan_id:
        raise ValidationError("plan_id is required")
    cents = parse_amount_in_cents(amount_in_cents)
    sub = get_subscription_for_user(user_id)
    if not sub:
        raise ValidationError("No subscription to upgrade for this user")
    if sub["plan_id"] == str(plan_id):
        raise ValidationError("Subscription is already on this plan")

    reference = new_reference("upg")
    currency = sub["currency"]
    with payments_store.ledger_transaction(reference, kind="upgrade") as s:
        payments_store.upsert_payment(s, {
            "reference": reference,
            "sponsor_id": user_id,
            "plan_id": str(plan_id),
            "amount": payments_store.from_cents(cents),
            "currency": currency,
            "payment_status": "PENDING",
        })
    logger.info("Upgrade %s opened for user %s to plan %s", reference, user_id, plan_id)
    return {
        "reference": reference,
        "amountInCents": cents,
        "currency": currency,
        "signature": verifier.generate(reference, cents, currency),
    }
