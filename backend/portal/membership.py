# portal/membership.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from portal import models, plans
from portal.logs import get_logger
from portal.payments import unix_to_dt

logger = get_logger(__name__)


def get_or_create_record(db: Session, user: models.User) -> models.MembershipRecord:
    record = user.membership
    if record is None:
        record = models.MembershipRecord(user_id=user.id, tier=plans.TIER_EXTERNAL, has_membership=False)
        db.add(record)
        db.flush()
        user.membership = record
    return record


def find_record_by_customer(db: Session, customer_id: str) -> Optional[models.MembershipRecord]:
    if not customer_id:
        return None
    return db.scalar(select(models.MembershipRecord).where(models.MembershipRecord.customer_id == customer_id))


def find_record_by_subscription(db: Session, subscription_id: str) -> Optional[models.MembershipRecord]:
    if not subscription_id:
        return None
    return db.scalar(
        select(models.MembershipRecord).where(models.MembershipRecord.subscription_id == subscription_id)
    )


def _receipt_url(intent) -> Optional[str]:
    charge = intent.get("latest_charge")
    if isinstance(charge, dict):
        return charge.get("receipt_url")
    charges = (intent.get("charges") or {}).get("data") or []
    if charges:
        return charges[0].get("receipt_url")
    return None


def record_pending_payment(
    db: Session,
    record: models.MembershipRecord,
    *,
    tier: str,
    amount: float,
    currency: str,
    payment_intent_id: str,
) -> None:
    """
    Remember which PaymentIntent belongs to the user so the receipt and
    verification endpoints can check ownership. Membership stays inactive
    until the payment is confirmed.
    """
    record.tier = tier
    record.last_payment_amount = amount
    record.currency = currency
    record.payment_intent_id = payment_intent_id
    db.commit()


def apply_payment_confirmation(
    db: Session,
    record: models.MembershipRecord,
    intent,
    now: Optional[datetime] = None,
) -> bool:
    """
    Activate membership from a succeeded PaymentIntent.
    Returns False (and changes nothing) for any other status.
    """
    if (intent.get("status") or "") != "succeeded":
        return False

    # pay date comes from the intent so repeated confirmations agree
    now = now or unix_to_dt(intent.get("created")) or datetime.utcnow()
    metadata = intent.get("metadata") or {}

    record.tier = plans.normalize_tier(metadata.get("membership_type")) or record.tier or plans.TIER_EXTERNAL
    record.last_payment_amount = plans.from_minor_units(intent.get("amount"))
    record.currency = (intent.get("currency") or record.currency or "").lower() or None
    record.last_payment_at = now
    record.payment_intent_id = intent.get("id")
    record.receipt_url = _receipt_url(intent) or record.receipt_url
    record.invoice_id = intent.get("invoice") or record.invoice_id
    if metadata.get("subscription_id"):
        record.subscription_id = metadata["subscription_id"]
    record.subscription_status = "active"
    if not record.has_membership or not record.membership_start:
        record.membership_start = now
    record.current_period_end = plans.one_term_after(now)
    record.has_membership = True

    db.commit()
    logger.info(
        "membership_activated",
        user_id=record.user_id,
        tier=record.tier,
        payment_intent=record.payment_intent_id,
    )
    return True


def apply_subscription_update(db: Session, record: models.MembershipRecord, subscription) -> None:
    status = (subscription.get("status") or "").strip().lower() or None
    if status and status not in plans.SUBSCRIPTION_STATUSES:
        status = None

    record.subscription_id = subscription.get("id") or record.subscription_id
    record.subscription_status = status
    period_end = unix_to_dt(subscription.get("current_period_end"))
    if period_end:
        record.current_period_end = period_end

    tier = plans.normalize_tier((subscription.get("metadata") or {}).get("membership_type"))
    if tier:
        record.tier = tier

    customer_id = (subscription.get("customer") or "").strip()
    if customer_id and not record.customer_id:
        record.customer_id = customer_id

    record.has_membership = plans.is_active_status(status)
    if record.has_membership and not record.membership_start:
        record.membership_start = datetime.utcnow()

    db.commit()
    logger.info(
        "membership_subscription_synced",
        user_id=record.user_id,
        subscription_id=record.subscription_id,
        status=record.subscription_status,
    )


def is_membership_active(record: Optional[models.MembershipRecord], now: Optional[datetime] = None) -> bool:
    if record is None or not record.has_membership:
        return False
    if record.current_period_end is None:
        return True
    return (now or datetime.utcnow()) < record.current_period_end


def already_applied(record: Optional[models.MembershipRecord], intent) -> bool:
    """True when this succeeded intent has already activated the record."""
    if record is None or not record.has_membership:
        return False
    if record.payment_intent_id != intent.get("id"):
        return False
    paid_at = unix_to_dt(intent.get("created"))
    return paid_at is not None and record.last_payment_at == paid_at
