# controllers/payments.py
from __future__ import annotations
from datetime import datetime
from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from services.payments.base import require_fields
from services.payments.checkout import (
    charge_subscription, generate_pay_source, save_donation, start_upgrade,
)
from services.payments.errors import (
    PaymentError, SignatureMismatchError, UpstreamError, ValidationError,
)
from services.payments.registry import get_components

payments_bp = Blueprint("payments", __name__)


def _respond(status: int, message: str, data=None, error=None):
    return jsonify({
        "success": status == 200,
        "message": message,
        "data": data,
        "error": error,
    }), status


def _jsonable(row: dict | None) -> dict | None:
    if row is None:
        return None
    out = {}
    for k, v in row.items():
        if isinstance(v, datetime):
            v = v.isoformat()
        elif isinstance(v, Decimal):
            v = str(v)
        out[k] = v
    return out


def _relay_upstream(e: UpstreamError, what: str):
    current_app.logger.error("Gateway error while %s: HTTP %s", what, e.status_code)
    # a failed flow never answers 2xx/3xx
    status = e.status_code if e.status_code >= 400 else 502
    return jsonify(e.body), status


@payments_bp.errorhandler(PaymentError)
def handle_payment_error(e: PaymentError):
    if e.http_status >= 500:
        current_app.logger.error("%s on %s %s: %s", e.__class__.__name__,
                                 request.method, request.path, e.detail)
    return _respond(e.http_status, e.message, error=e.detail)


# ----- checkout signature -----

@payments_bp.post("/payments/signature")
def generate_signature():
    body = require_fields(request.get_json(silent=True) or {},
                          ("reference", "amountInCents", "currency"))
    signature = get_components().verifier.generate(
        body["reference"], body["amountInCents"], body["currency"])
    return jsonify({"signature": signature}), 200


# ----- donation confirmation from the checkout widget -----

@payments_bp.post("/payments/donations")
def save_donation_route():
    res = save_donation(request.get_json(silent=True) or {}, get_components().verifier)
    message = "Donation already recorded." if res["duplicate"] else "Donation saved."
    return _respond(200, message, {
        "payment": _jsonable(res["payment"]),
        "donation": _jsonable(res["donation"]),
    })


# ----- gateway webhook (no auth, signature-verified) -----

@payments_bp.post("/payments/webhook")
def webhook():
    """
    200 for processed, duplicate and unmatched events; 400 for malformed or
    badly signed ones; 500 for anything else so the gateway redelivers.
    """
    processor = get_components().processor
    try:
        result = processor.process(request.get_json(silent=True))
    except (ValidationError, SignatureMismatchError) as e:
        return jsonify({"received": False, "error": e.detail}), 400
    except Exception:
        current_app.logger.exception("Webhook processing failed")
        return jsonify({"received": False, "error": "Internal server error."}), 500

    return jsonify({
        "received": True,
        "outcome": result.outcome.value,
        "message": "Webhook received",
    }), 200


# ----- reusable payment sources (authenticated) -----

@payments_bp.post("/payments/payment-sources")
@login_required
def generate_pay_source_route():
    c = get_components()
    try:
        res = generate_pay_source(current_user.id, request.get_json(silent=True) or {},
                                  c.client, c.cipher)
    except UpstreamError as e:
        return _relay_upstream(e, "creating a payment source")
    return jsonify({
        "success": True,
        "reference": res["reference"],
        "payment_source_api_data": res["payment_source"],
    }), 200


@payments_bp.post("/payments/subscriptions/charge")
@login_required
def charge_subscription_route():
    c = get_components()
    body = request.get_json(silent=True) or {}
    try:
        res = charge_subscription(current_user.id, body.get("amount_in_cents"),
                                  c.client, c.cipher, c.verifier)
    except UpstreamError as e:
        return _relay_upstream(e, "charging a subscription")
    return _respond(200, "Charge submitted.", res)


@payments_bp.post("/payments/upgrades")
@login_required
def start_upgrade_route():
    body = request.get_json(silent=True) or {}
    res = start_upgrade(current_user.id, body.get("plan_id"), body.get("amount_in_cents"),
                        get_components().verifier)
    return _respond(200, "Upgrade started.", res)
