from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from models import payments_store
from models.schema import PaymentRecord, SubscriptionRecord
from models.subscriptions_store import get_subscription_for_user
from tests.utils import PRIVATE_KEY, PUBLIC_KEY, count_rows, post_json, sign, webhook_body

MERCHANT = {"data": {
    "presigned_acceptance": {"acceptance_token": "acc_tok"},
    "presigned_personal_data_auth": {"acceptance_token": "pers_tok"},
}}

SOURCE_BODY = {
    "type": "CARD",
    "token": "tok_test_1",
    "customer_email": "sponsor@example.org",
    "payment_description": "Monthly sponsorship",
    "plan_id": "basic",
    "frequency": "monthly",
    "amount_in_cents": 150000,
}


@pytest.fixture
def gateway_ok(gateway):
    gateway.on("GET", f"/merchants/{PUBLIC_KEY}", payload=MERCHANT)
    gateway.on("POST", "/payment_sources",
               payload={"data": {"id": 3891, "type": "CARD", "status": "AVAILABLE"}})
    return gateway


def _create_source(client, api_user, body=None):
    return post_json(client, "/payments/payment-sources", body or SOURCE_BODY,
                     headers=api_user["headers"])


def test_requires_bearer_token(client, gateway):
    r = post_json(client, "/payments/payment-sources", SOURCE_BODY)
    assert r.status_code == 401
    r = post_json(client, "/payments/payment-sources", SOURCE_BODY,
                  headers={"Authorization": "Bearer not-a-real-token"})
    assert r.status_code == 401
    assert gateway.calls == []


def test_source_id_is_encrypted_everywhere(client, api_user, gateway_ok, components):
    r = _create_source(client, api_user)
    assert r.status_code == 200
    body = r.get_json()
    assert body["success"] is True
    assert body["reference"].startswith("sub_")

    returned = body["payment_source_api_data"]
    assert returned["id"] != 3891
    assert returned["status"] == "AVAILABLE"
    assert components.cipher.decrypt(returned["id"]) == "3891"

    sub = get_subscription_for_user(api_user["id"])
    assert "3891" not in sub["payment_source_id"]
    assert components.cipher.decrypt(sub["payment_source_id"]) == "3891"
    assert sub["payment_id"] == body["reference"]
    assert sub["status"] == "pending"
    assert sub["plan_id"] == "basic"

    p = payments_store.get_payment(body["reference"])
    assert p["payment_status"] == "PENDING"
    assert p["sponsor_id"] == api_user["id"]
    assert str(p["amount"]) == "1500.00"


def test_gateway_receives_credentials_and_acceptance(client, api_user, gateway_ok):
    _create_source(client, api_user)
    merchant_call, = gateway_ok.calls_to(f"/merchants/{PUBLIC_KEY}")
    source_call, = gateway_ok.calls_to("/payment_sources")
    assert merchant_call["headers"]["Authorization"] == f"Bearer {PRIVATE_KEY}"
    assert source_call["headers"]["Authorization"] == f"Bearer {PRIVATE_KEY}"
    assert source_call["json"]["acceptance_token"] == "acc_tok"
    assert source_call["json"]["accept_personal_auth"] == "pers_tok"
    assert source_call["json"]["token"] == "tok_test_1"


def test_missing_type_is_400_without_gateway_call(client, api_user, gateway_ok):
    body = {k: v for k, v in SOURCE_BODY.items() if k != "type"}
    r = _create_source(client, api_user, body)
    assert r.status_code == 400
    assert r.get_json()["error"] == "Payment source type is not defined"
    assert gateway_ok.calls == []


def test_gateway_rejection_is_relayed(client, api_user, gateway):
    err = {"error": {"type": "INPUT_VALIDATION_ERROR", "messages": {"token": ["expired"]}}}
    gateway.on("GET", f"/merchants/{PUBLIC_KEY}", payload=MERCHANT)
    gateway.on("POST", "/payment_sources", status=422, payload=err)
    r = _create_source(client, api_user)
    assert r.status_code == 422
    assert r.get_json() == err["error"]
    assert count_rows(PaymentRecord) == 0
    assert count_rows(SubscriptionRecord) == 0


def test_unreachable_gateway_is_502(client, api_user, gateway):
    r = _create_source(client, api_user)
    assert r.status_code == 502
    assert r.get_json()["success"] is False


def test_local_failure_after_gateway_call_leaves_no_rows(client, api_user, gateway_ok,
                                                         monkeypatch):
    def db_down(s, payment, extra):
        raise OperationalError("INSERT INTO subscriptions", {}, Exception("disk I/O error"))

    monkeypatch.setitem(payments_store._DEPENDENT_BUILDERS, "subscription", db_down)
    r = _create_source(client, api_user)
    assert r.status_code == 500
    assert r.get_json()["success"] is False
    assert len(gateway_ok.calls_to("/payment_sources")) == 1
    assert count_rows(PaymentRecord) == 0
    assert count_rows(SubscriptionRecord) == 0


# ----- charging the stored source -----

def test_charge_uses_decrypted_source_and_signs(client, api_user, gateway_ok):
    _create_source(client, api_user)
    gateway_ok.on("POST", "/transactions", status=201,
                  payload={"data": {"id": "tx-9", "status": "PENDING"}})

    r = post_json(client, "/payments/subscriptions/charge", {"amount_in_cents": 150000},
                  headers=api_user["headers"])
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["transaction"] == {"id": "tx-9", "status": "PENDING"}

    sent = gateway_ok.calls_to("/transactions")[0]["json"]
    assert sent["payment_source_id"] == 3891
    assert sent["reference"] == data["reference"]
    assert sent["signature"] == sign(data["reference"], 150000, "COP")
    assert sent["customer_email"] == "sponsor@example.org"

    assert payments_store.get_payment(data["reference"])["payment_status"] == "PENDING"
    assert get_subscription_for_user(api_user["id"])["payment_id"] == data["reference"]


def test_refused_charge_marks_payment_error(client, api_user, gateway_ok):
    _create_source(client, api_user)
    gateway_ok.on("POST", "/transactions", status=422,
                  payload={"error": {"type": "INPUT_VALIDATION_ERROR"}})

    r = post_json(client, "/payments/subscriptions/charge", {"amount_in_cents": 150000},
                  headers=api_user["headers"])
    assert r.status_code == 422
    reference = get_subscription_for_user(api_user["id"])["payment_id"]
    assert payments_store.get_payment(reference)["payment_status"] == "ERROR"


def test_charge_without_source_on_file_is_400(client, api_user, gateway):
    r = post_json(client, "/payments/subscriptions/charge", {"amount_in_cents": 150000},
                  headers=api_user["headers"])
    assert r.status_code == 400
    assert gateway.calls == []


def test_malformed_gateway_answer_is_never_relayed_as_success(client, api_user, gateway):
    gateway.on("GET", f"/merchants/{PUBLIC_KEY}", payload={"data": {}})
    r = _create_source(client, api_user)
    assert r.status_code == 502
    assert count_rows(PaymentRecord) == 0


def test_approved_webhook_sets_amount_on_placeholder(client, api_user, gateway_ok):
    body = {k: v for k, v in SOURCE_BODY.items() if k != "amount_in_cents"}
    reference = _create_source(client, api_user, body).get_json()["reference"]
    assert str(payments_store.get_payment(reference)["amount"]) == "0.00"

    r = post_json(client, "/payments/webhook", webhook_body(reference, amount_in_cents=150000))
    assert r.status_code == 200
    p = payments_store.get_payment(reference)
    assert p["payment_status"] == "APPROVED"
    assert p["amount"] == Decimal("1500.00")
    assert get_subscription_for_user(api_user["id"])["status"] == "active"


# ----- plan upgrades -----

def test_upgrade_started_through_route_applies_on_approval(client, api_user, gateway_ok):
    _create_source(client, api_user)
    r = post_json(client, "/payments/upgrades", {"plan_id": "pro", "amount_in_cents": 5000000},
                  headers=api_user["headers"])
    assert r.status_code == 200
    data = r.get_json()["data"]
    reference = data["reference"]
    assert reference.startswith("upg_")
    assert data["currency"] == "COP"
    assert data["signature"] == sign(reference, 5000000, "COP")

    p = payments_store.get_payment(reference)
    assert p["payment_status"] == "PENDING"
    assert p["sponsor_id"] == api_user["id"]
    assert p["plan_id"] == "pro"
    assert get_subscription_for_user(api_user["id"])["plan_id"] == "basic"

    r = post_json(client, "/payments/webhook",
                  webhook_body(reference, amount_in_cents=5000000, signature=data["signature"]))
    assert r.status_code == 200
    sub = get_subscription_for_user(api_user["id"])
    assert sub["plan_id"] == "pro"
    assert sub["payment_id"] == reference
    assert sub["status"] == "active"
    assert payments_store.get_payment(reference)["amount"] == Decimal("50000.00")


def test_upgrade_needs_subscription_and_plan(client, api_user):
    r = post_json(client, "/payments/upgrades", {"plan_id": "pro", "amount_in_cents": 5000000},
                  headers=api_user["headers"])
    assert r.status_code == 400
    r = post_json(client, "/payments/upgrades", {"amount_in_cents": 5000000},
                  headers=api_user["headers"])
    assert r.status_code == 400
    r = post_json(client, "/payments/upgrades", {"plan_id": "pro", "amount_in_cents": 5000000})
    assert r.status_code == 401
    assert count_rows(PaymentRecord) == 0
