# services/payments/signature.py
"""
Integrity signatures.

Checkout (outbound) and payment-confirmation (inbound) payloads are signed as
    sha256(reference + amountInCents + currency + integrity_key)
Wompi event envelopes carry their own checksum:
    sha256(<values of signature.properties> + timestamp + events_key)
All comparisons are constant-time.
"""

from __future__ import annotations
import hashlib
import hmac
from typing import Any, Dict

from services.payments.base import parse_amount_in_cents, require_fields
from services.payments.errors import ValidationError


def _sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _resolve_property(data: Dict[str, Any], dotted: str) -> Any:
    node: Any = data
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            raise ValidationError(f"Checksum property not in event: {dotted}")
        node = node[part]
    return node


class SignatureVerifier:
    def __init__(self, integrity_key: str, events_key: str | None = None):
        if not integrity_key:
            raise ValueError("integrity_key is required")
        self._integrity_key = integrity_key
        self._events_key = events_key

    def generate(self, reference: str, amount_in_cents: Any, currency: str) -> str:
        if not reference or not currency:
            raise ValidationError("reference and currency are required")
        cents = parse_amount_in_cents(amount_in_cents)
        return _sha256_hex(f"{reference}{cents}{currency}{self._integrity_key}")

    def verify(self, payload: Dict[str, Any], signature: str | None) -> bool:
        """
        Recompute the signature from the payload's own reference, amount and
        currency. Missing fields raise ValidationError; a wrong signature
        just returns False.
        """
        require_fields(payload, ("reference", "amountInCents", "currency"))
        if not signature:
            raise ValidationError("Missing field(s): signature")
        expected = self.generate(
            payload["reference"], payload["amountInCents"], payload["currency"])
        return hmac.compare_digest(expected.encode("utf-8"), str(signature).encode("utf-8"))

    def verify_event_checksum(self, envelope: Dict[str, Any]) -> bool:
        if not self._events_key:
            # nothing to verify against: never trust an envelope
            return False
        sig = envelope.get("signature") or {}
        props = sig.get("properties") or []
        checksum = str(sig.get("checksum") or "")
        if not props or not checksum:
            raise ValidationError("Event envelope without signature properties")
        data = envelope.get("data") or {}
        values = "".join(str(_resolve_property(data, p)) for p in props)
        expected = _sha256_hex(
            f"{values}{envelope.get('timestamp')}{self._events_key}")
        return hmac.compare_digest(expected.encode("utf-8"), checksum.lower().encode("utf-8"))
