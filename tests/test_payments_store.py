from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from models import payments_store
from models.schema import DonationRecord, PaymentRecord
from services.payments.errors import DuplicateEventError, TransactionError, ValidationError
from tests.utils import count_rows


def _payment(reference="don_1", status="APPROVED", cents=250000):
    return {
        "reference": reference,
        "user_id": 7,
        "amount": payments_store.from_cents(cents),
        "currency": "COP",
        "payment_date": datetime(2024, 5, 1, tzinfo=timezone.utc),
        "transaction_id": "tx-1",
        "payment_status": status,
        "payment_method": "card",
    }


def test_from_cents_is_exact():
    assert payments_store.from_cents(250000) == Decimal("2500.00")
    assert payments_store.from_cents(1) == Decimal("0.01")
    assert payments_store.from_cents(99999999999) == Decimal("999999999.99")


def test_payment_and_donation_commit_together():
    res = payments_store.create_payment_and_dependent(_payment(), "donation")
    assert res["payment"]["reference"] == "don_1"
    assert res["dependent"]["payment_id"] == "don_1"
    assert res["dependent"]["sponsor_id"] == 7
    assert res["dependent"]["message"] == "Donation via card"
    assert count_rows(PaymentRecord) == 1
    assert count_rows(DonationRecord) == 1


def test_failure_between_inserts_leaves_nothing(monkeypatch):
    def broken_donation(s, payment, extra):
        # NOT NULL violation after the payment row was flushed
        s.add(DonationRecord(payment_id=payment.reference, message=None, amount=None,
                             created_at=datetime.now(timezone.utc)))
        s.flush()

    monkeypatch.setitem(payments_store._DEPENDENT_BUILDERS, "donation", broken_donation)
    with pytest.raises(TransactionError):
        payments_store.create_payment_and_dependent(_payment(), "donation")

    assert payments_store.get_payment("don_1") is None
    assert count_rows(PaymentRecord) == 0
    assert count_rows(DonationRecord) == 0


def test_database_error_is_transaction_error(monkeypatch):
    def locked(s, payment, extra):
        raise OperationalError("INSERT INTO donations", {}, Exception("database is locked"))

    monkeypatch.setitem(payments_store._DEPENDENT_BUILDERS, "donation", locked)
    with pytest.raises(TransactionError):
        payments_store.create_payment_and_dependent(_payment(), "donation")
    assert count_rows(PaymentRecord) == 0


def test_second_insert_of_same_reference_is_duplicate():
    payments_store.create_payment_and_dependent(_payment(), "donation")
    with pytest.raises(DuplicateEventError):
        payments_store.create_payment_and_dependent(_payment(), "donation")
    assert count_rows(PaymentRecord) == 1
    assert count_rows(DonationRecord) == 1


def test_unknown_dependent_kind_is_rejected():
    with pytest.raises(ValidationError):
        payments_store.create_payment_and_dependent(_payment(), "refund")


def test_subscription_dependent_needs_a_sponsor():
    with pytest.raises(ValidationError):
        payments_store.create_payment_and_dependent(_payment("sub_1"), "subscription")
    assert count_rows(PaymentRecord) == 0


def test_upsert_moves_pending_forward_but_never_leaves_terminal():
    payments_store.create_payment_and_dependent(_payment(status="PENDING"), "donation")

    with payments_store.ledger_transaction("don_1") as s:
        payments_store.upsert_payment(s, _payment(status="DECLINED"))
    assert payments_store.get_payment("don_1")["payment_status"] == "DECLINED"

    with payments_store.ledger_transaction("don_1") as s:
        payments_store.upsert_payment(s, _payment(status="APPROVED"))
    assert payments_store.get_payment("don_1")["payment_status"] == "DECLINED"

    assert payments_store.set_payment_status("don_1", "ERROR") is False


def test_processed_marker_is_written_once():
    assert payments_store.mark_event_processed("k1", "don_1", "APPROVED", "processed", {}) is True
    assert payments_store.mark_event_processed("k1", "don_1", "APPROVED", "processed", {}) is False
    assert payments_store.is_duplicate_event("k1", "don_1") is True
    assert payments_store.is_duplicate_event("k2", "don_1") is False
