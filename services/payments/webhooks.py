# services/payments/webhooks.py
"""
Webhook processing: verify -> deduplicate -> classify -> dispatch.

Classification produces a SET of handler tags, not a single match. The
course/subscription/upgrade tags require status APPROVED; the donation tag
only looks at the reference prefix, so a declined donation is still
recorded (its payment lands in DECLINED).

Each handler commits its database effects in one transaction and is safe to
run again: payments are upserted with forward-only status and dependents
are created only when missing. The processed marker is written after every
handler succeeded, so a delivery that failed half-way is handled again on
the gateway's retry.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Tuple

from models import payments_store, registrations_store, subscriptions_store
from services.metrics import SIGNATURE_FAILURES, WEBHOOK_EVENTS
from services.notify import Notifier
from services.payments.base import WebhookEvent, parse_webhook_payload
from services.payments.errors import DuplicateEventError, SignatureMismatchError
from services.payments.signature import SignatureVerifier

logger = logging.getLogger(__name__)


class HandlerTag(str, Enum):
    COURSE = "course"
    SUBSCRIPTION = "subscription"
    UPGRADE = "upgrade"
    DONATION = "donation"


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    NOOP = "noop"


APPROVAL_GATED_PREFIXES = (
    ("ia_", HandlerTag.COURSE),
    ("sub_", HandlerTag.SUBSCRIPTION),
    ("upg_", HandlerTag.UPGRADE),
)
UNGATED_PREFIXES = (
    ("don_", HandlerTag.DONATION),
)
HANDLER_ORDER = (HandlerTag.COURSE, HandlerTag.SUBSCRIPTION,
                 HandlerTag.UPGRADE, HandlerTag.DONATION)


def classify(event: WebhookEvent) -> Tuple[HandlerTag, ...]:
    tags = set()
    if event.status == "APPROVED":
        tags.update(tag for prefix, tag in APPROVAL_GATED_PREFIXES
                    if event.reference.startswith(prefix))
    tags.update(tag for prefix, tag in UNGATED_PREFIXES
                if event.reference.startswith(prefix))
    return tuple(t for t in HANDLER_ORDER if t in tags)


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    reference: str
    tags: Tuple[HandlerTag, ...] = ()


def _payment_data(event: WebhookEvent) -> Dict[str, Any]:
    return {
        "reference": event.reference,
        "sponsor_id": None,
        "user_id": event.customer_id,
        "amount": payments_store.from_cents(event.amount_in_cents),
        "currency": event.currency,
        "payment_date": event.payment_date or datetime.now(timezone.utc),
        "transaction_id": event.transaction_id,
        "payment_status": event.status,
        "payment_method": event.payment_method_type,
    }


class WebhookProcessor:
    def __init__(self, verifier: SignatureVerifier, notifier: Notifier):
        self.verifier = verifier
        self.notifier = notifier
        self.handlers: Dict[HandlerTag, Callable[[WebhookEvent], None]] = {
            HandlerTag.COURSE: self._handle_course,
            HandlerTag.SUBSCRIPTION: self._handle_subscription,
            HandlerTag.UPGRADE: self._handle_upgrade,
            HandlerTag.DONATION: self._handle_donation,
        }

    # ----- pipeline -------------------------------------------------------

    def verify(self, event: WebhookEvent) -> None:
        if event.envelope:
            ok = self.verifier.verify_event_checksum(event.raw)
        else:
            ok = self.verifier.verify(event.raw, event.signature)
        if not ok:
            SIGNATURE_FAILURES.labels(source="webhook").inc()
            logger.warning("Webhook signature mismatch for reference %s (possible tampering)",
                           event.reference)
            raise SignatureMismatchError()

    def process(self, payload: Any) -> WebhookResult:
        """
        Raises ValidationError / SignatureMismatchError before anything is
        read from or written to the database. Handler failures propagate.
        """
        event = parse_webhook_payload(payload)
        self.verify(event)

        if payments_store.is_duplicate_event(event.idempotency_key, event.reference):
            logger.info("Duplicate webhook discarded: %s", event.idempotency_key)
            WEBHOOK_EVENTS.labels(kind="none", outcome="duplicate").inc()
            return WebhookResult(WebhookOutcome.DUPLICATE, event.reference)

        event.tags = classify(event)
        if not event.tags:
            logger.info("No handler for %s (status %s)", event.reference, event.status)
            payments_store.mark_event_processed(
                event.idempotency_key, event.reference, event.status, "noop", event.raw)
            WEBHOOK_EVENTS.labels(kind="none", outcome="noop").inc()
            return WebhookResult(WebhookOutcome.NOOP, event.reference)

        for tag in event.tags:
            logger.info("Processing %s webhook for %s", tag.value, event.reference)
            try:
                self._run(tag, event)
            except DuplicateEventError:
                logger.info("Concurrent delivery already applied %s", event.reference)
                WEBHOOK_EVENTS.labels(kind=tag.value, outcome="duplicate").inc()
                return WebhookResult(WebhookOutcome.DUPLICATE, event.reference, event.tags)
            WEBHOOK_EVENTS.labels(kind=tag.value, outcome="processed").inc()

        payments_store.mark_event_processed(
            event.idempotency_key, event.reference, event.status, "processed", event.raw)
        return WebhookResult(WebhookOutcome.PROCESSED, event.reference, event.tags)

    def _run(self, tag: HandlerTag, event: WebhookEvent) -> None:
        # A unique-constraint loss means another delivery committed the row
        # between our read and our insert; one more pass goes down the
        # update path and respects forward-only status.
        try:
            self.handlers[tag](event)
        except DuplicateEventError:
            self.handlers[tag](event)

    # ----- handlers -------------------------------------------------------

    def _handle_course(self, event: WebhookEvent) -> None:
        with payments_store.ledger_transaction(event.reference, kind="course") as s:
            payment = payments_store.upsert_payment(s, _payment_data(event))
            confirmed = registrations_store.confirm_for_payment(
                s, event.reference, payment.payment_date)

        for reg in confirmed:
            full_name = f"{reg['name']} {reg['lastname']}"
            res = self.notifier.send_welcome_email(
                reg["email"], full_name, reg["selected_course"])
            if not res.get("success"):
                logger.warning("Welcome email to registration %s failed: %s",
                               reg["id"], res.get("error"))
            res = self.notifier.send_notification_email({
                "email": reg["email"],
                "username": full_name,
                "phone": reg["phone"],
                "documentNumber": reg["document"],
                "paymentMethod": event.payment_method_type,
                "amount": str(payments_store.from_cents(event.amount_in_cents)),
                "selected_course": reg["selected_course"],
                "reference": event.reference,
            })
            if not res.get("success"):
                logger.warning("Notification email for registration %s failed: %s",
                               reg["id"], res.get("error"))

    def _handle_subscription(self, event: WebhookEvent) -> None:
        with payments_store.ledger_transaction(event.reference, kind="subscription") as s:
            payments_store.upsert_payment(s, _payment_data(event))
            sub = subscriptions_store.activate_for_payment(s, event.reference)
        if sub is None:
            logger.warning("Approved subscription payment %s has no linked subscription",
                           event.reference)

    def _handle_upgrade(self, event: WebhookEvent) -> None:
        with payments_store.ledger_transaction(event.reference, kind="upgrade") as s:
            payment = payments_store.upsert_payment(s, _payment_data(event))
            sub = subscriptions_store.apply_upgrade(s, payment)
        if sub is None:
            logger.warning("Upgrade payment %s matched no subscription", event.reference)

    def _handle_donation(self, event: WebhookEvent) -> None:
        data = _payment_data(event)
        if payments_store.get_payment(event.reference) is None:
            payments_store.create_payment_and_dependent(data, "donation")
            return
        with payments_store.ledger_transaction(event.reference, kind="donation") as s:
            payment = payments_store.upsert_payment(s, data)
            payments_store.ensure_donation(s, payment)
