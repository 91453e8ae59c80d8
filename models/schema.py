# models/schema.py
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric,
    String, Text, UniqueConstraint,
)
from models.base import Base


# --- USERS (API callers of the authenticated endpoints)

class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    # sha256 hex of the bearer token; the token itself is never stored
    api_token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("api_token_hash", name="uq_users_api_token_hash"),
    )


# --- LEDGER

class PaymentRecord(Base):
    __tablename__ = "payments"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    reference: Mapped[str] = mapped_column(String(128), nullable=False)
    sponsor_id: Mapped[int | None] = mapped_column(Integer)
    user_id: Mapped[int | None] = mapped_column(Integer)
    plan_id: Mapped[str | None] = mapped_column(String(64))
    # major units (cents / 100)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    transaction_id: Mapped[str | None] = mapped_column(String(128))
    payment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="PENDING")
    payment_method: Mapped[str] = mapped_column(
        String(32), nullable=False, default="unknown")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        UniqueConstraint("reference", name="uq_payments_reference"),
        CheckConstraint("amount >= 0", name="ck_payments_amount_ge_0"),
        CheckConstraint(
            "payment_status in ('PENDING','APPROVED','DECLINED','VOIDED','ERROR')",
            name="ck_payments_status"),
        Index("idx_payments_sponsor", "sponsor_id"),
    )


class DonationRecord(Base):
    __tablename__ = "donations"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    payment_id: Mapped[str] = mapped_column(String(128), ForeignKey(
        "payments.reference", ondelete="RESTRICT"), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    camper_id: Mapped[int | None] = mapped_column(Integer)
    sponsor_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_donations_payment_id"),
    )


class SubscriptionRecord(Base):
    __tablename__ = "subscriptions"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    # latest payment this subscription was (re)linked to
    payment_id: Mapped[str] = mapped_column(String(128), ForeignKey(
        "payments.reference", ondelete="RESTRICT"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    plan_id: Mapped[str | None] = mapped_column(String(64))
    frequency: Mapped[str | None] = mapped_column(String(32))
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending")
    # Fernet token, never the gateway's plaintext id
    payment_source_id: Mapped[str | None] = mapped_column(Text)
    payment_source_type: Mapped[str | None] = mapped_column(String(32))
    customer_email: Mapped[str | None] = mapped_column(String(254))
    activated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_subscriptions_user"),
        CheckConstraint("status in ('pending','active','canceled')",
                        name="ck_subscriptions_status"),
        Index("idx_subscriptions_payment", "payment_id"),
    )


class WebhookEventRecord(Base):
    """Durable marker of a webhook delivery that was fully handled."""
    __tablename__ = "webhook_events"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    idempotency_key: Mapped[str] = mapped_column(String(300), nullable=False)
    reference: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    raw: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_webhook_events_key"),
        CheckConstraint("outcome in ('processed','noop')",
                        name="ck_webhook_events_outcome"),
        Index("idx_webhook_events_reference", "reference"),
    )


# --- COURSE REGISTRATIONS (paid with "ia_" references)

class CourseRegistration(Base):
    __tablename__ = "course_registrations"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    lastname: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    document: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_reference: Mapped[str] = mapped_column(String(128), nullable=False)
    selected_course: Mapped[str] = mapped_column(String, nullable=False)
    course_date: Mapped[str | None] = mapped_column(String(10))  # YYYY-MM-DD
    num_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payment_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    confirmed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        CheckConstraint("num_seats >= 1", name="ck_registrations_seats_ge_1"),
        Index("idx_registrations_reference", "payment_reference"),
    )
