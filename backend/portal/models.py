# portal/models.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Float,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # stored lowercased; lookups normalise before querying
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    membership = relationship(
        "MembershipRecord",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    payment_methods = relationship(
        "SavedPaymentMethod",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="SavedPaymentMethod.saved_at",
    )


class MembershipRecord(Base):
    __tablename__ = "memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False, index=True)

    # Values: "internal" | "external"
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="external")

    last_payment_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    last_payment_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Stripe references
    customer_id: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)
    invoice_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    receipt_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)

    # active / canceled / incomplete / past_due / trialing / unpaid
    subscription_status: Mapped[str | None] = mapped_column(String(30), nullable=True)

    membership_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    has_membership: Mapped[bool] = mapped_column(Boolean, default=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="membership")


class SavedPaymentMethod(Base):
    __tablename__ = "saved_payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    payment_method_id: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    last4: Mapped[str] = mapped_column(String(4), nullable=False)
    brand: Mapped[str] = mapped_column(String(30), nullable=False)
    expiry_month: Mapped[int] = mapped_column(Integer, nullable=False)
    expiry_year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    saved_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="payment_methods")


class RevokedSession(Base):
    __tablename__ = "revoked_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    sid: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False, default="logout")
    revoked_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
