import hashlib
import json

import requests
from sqlalchemy import func, select

from models.base import session_scope

INTEGRITY_KEY = "test_integrity_Q2p9"
EVENTS_KEY = "test_events_7Hx1"
PUBLIC_KEY = "pub_test_merchant"
PRIVATE_KEY = "prv_test_secret"
GATEWAY_URL = "https://sandbox.wompi.test/v1"

GATEWAY_CONFIG = {
    "WOMPI_INTEGRITY_KEY": INTEGRITY_KEY,
    "WOMPI_EVENTS_KEY": EVENTS_KEY,
    "WOMPI_PUBLIC_KEY": PUBLIC_KEY,
    "WOMPI_PRIVATE_KEY": PRIVATE_KEY,
    "WOMPI_URL": GATEWAY_URL,
    "PAYMENT_TOKEN_SECRET": "test-token-secret",
}


# tests/utils.py
def sign(reference, amount_in_cents, currency, key=INTEGRITY_KEY):
    # independent recomputation of the checkout integrity signature
    raw = f"{reference}{amount_in_cents}{currency}{key}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def webhook_body(reference, status="APPROVED", amount_in_cents=150000, currency="COP",
                 transaction_id="tx-1", signature=None, **extra):
    body = {
        "reference": reference,
        "status": status,
        "amountInCents": amount_in_cents,
        "currency": currency,
        "transaction_id": transaction_id,
        "signature": signature or sign(reference, amount_in_cents, currency),
    }
    body.update(extra)
    return body


def post_json(client, path, body, headers=None):
    return client.post(path, data=json.dumps(body), content_type="application/json",
                       headers=headers or {})


def count_rows(model, *where):
    with session_scope() as s:
        q = select(func.count()).select_from(model)
        for cond in where:
            q = q.where(cond)
        return s.execute(q).scalar()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    @property
    def text(self):
        return "" if self._payload is None else json.dumps(self._payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeGateway:
    """Stands in for requests.Session; routes are matched on URL suffix."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.routes = {}
        self.calls = []

    def on(self, method, path, status=200, payload=None, exc=None):
        self.routes[(method.upper(), path)] = (status, payload, exc)

    def calls_to(self, path):
        return [c for c in self.calls if c["url"].endswith(path)]

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "json": json,
                           "headers": headers, "timeout": timeout})
        for (m, path), (status, payload, exc) in self.routes.items():
            if m == method.upper() and url.endswith(path):
                if exc is not None:
                    raise exc
                return FakeResponse(status, payload)
        raise requests.ConnectionError(f"no fake route for {method} {url}")


class RecordingNotifier:
    def __init__(self):
        self.reset()

    def reset(self):
        self.welcome = []
        self.notifications = []
        self.fail = False

    def send_welcome_email(self, email, full_name, course_id):
        self.welcome.append((email, full_name, course_id))
        return {"success": not self.fail, "error": "smtp down" if self.fail else None}

    def send_notification_email(self, details):
        self.notifications.append(details)
        return {"success": not self.fail, "error": "smtp down" if self.fail else None}
