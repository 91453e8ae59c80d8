# models/registrations_store.py
"""Course registrations paid through "ia_" references (plain CRUD)."""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models.base import session_scope
from models.schema import CourseRegistration
from services.payments.errors import ValidationError

REQUIRED_FIELDS = ("name", "lastname", "email", "phone", "document",
                   "payment_reference", "selected_course")

_COLUMNS = ("id", "name", "lastname", "email", "phone", "document", "payment_reference",
            "selected_course", "course_date", "num_seats", "payment_date", "confirmed",
            "created_at")


def _to_dict(r: CourseRegistration) -> dict:
    return {c: getattr(r, c) for c in _COLUMNS}


def save_registration(data: Dict[str, Any]) -> int:
    missing = [f for f in REQUIRED_FIELDS if not data.get(f)]
    if missing:
        raise ValidationError(f"Missing field {missing[0]}")
    with session_scope() as s:
        r = CourseRegistration(
            name=data["name"], lastname=data["lastname"], email=data["email"],
            phone=data["phone"], document=data["document"],
            payment_reference=data["payment_reference"],
            selected_course=data["selected_course"],
            course_date=data.get("course_date"),
            num_seats=int(data.get("numSeats") or data.get("num_seats") or 1),
            payment_date=None,  # set when the payment is approved
            confirmed=False,
            created_at=datetime.now(timezone.utc),
        )
        s.add(r)
        s.flush()
        return r.id


def get_all_registered(course_date: str | None = None) -> List[dict]:
    with session_scope() as s:
        q = select(CourseRegistration).order_by(CourseRegistration.id)
        if course_date:
            q = q.where(CourseRegistration.course_date == course_date)
        return [_to_dict(r) for r in s.execute(q).scalars().all()]


def get_registered_by_id(registration_id: int) -> Optional[dict]:
    with session_scope() as s:
        r = s.get(CourseRegistration, registration_id)
        return _to_dict(r) if r else None


def get_confirmed_count(course_date: str | None = None) -> int:
    with session_scope() as s:
        q = select(func.coalesce(func.sum(CourseRegistration.num_seats), 0)).where(
            CourseRegistration.confirmed.is_(True))
        if course_date:
            q = q.where(CourseRegistration.course_date == course_date)
        return int(s.execute(q).scalar() or 0)


def confirm_for_payment(s: Session, reference: str, paid_at: datetime | None) -> List[dict]:
    """Confirm pending registrations for `reference`; returns only the newly confirmed."""
    rows = s.execute(select(CourseRegistration).where(
        CourseRegistration.payment_reference == reference,
        CourseRegistration.confirmed.is_(False),
    )).scalars().all()
    when = paid_at or datetime.now(timezone.utc)
    for r in rows:
        r.confirmed = True
        r.payment_date = when
    s.flush()
    return [_to_dict(r) for r in rows]
