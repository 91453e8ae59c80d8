import pytest

from models import registrations_store
from models.base import session_scope
from services.payments.errors import ValidationError

REG = {
    "name": "Mateo", "lastname": "Rojas", "email": "mateo@example.org",
    "phone": "3109876543", "document": "79111222", "payment_reference": "ia_2024-03",
    "selected_course": "ml-bootcamp", "course_date": "2024-07-15",
}


def test_save_and_read_back():
    rid = registrations_store.save_registration({**REG, "numSeats": 3})
    row = registrations_store.get_registered_by_id(rid)
    assert row["num_seats"] == 3
    assert row["confirmed"] is False
    assert registrations_store.get_all_registered("2024-07-15")[0]["id"] == rid
    assert registrations_store.get_all_registered("2030-01-01") == []


def test_missing_field_is_named():
    with pytest.raises(ValidationError) as ei:
        registrations_store.save_registration({**REG, "phone": ""})
    assert ei.value.detail == "Missing field phone"


def test_confirm_counts_only_new_rows():
    registrations_store.save_registration(REG)
    registrations_store.save_registration({**REG, "email": "other@example.org", "numSeats": 2})
    assert registrations_store.get_confirmed_count() == 0

    with session_scope() as s:
        first = registrations_store.confirm_for_payment(s, "ia_2024-03", None)
    with session_scope() as s:
        again = registrations_store.confirm_for_payment(s, "ia_2024-03", None)

    assert len(first) == 2
    assert again == []
    assert registrations_store.get_confirmed_count("2024-07-15") == 3
