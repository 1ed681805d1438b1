# portal/routers/billing.py
from __future__ import annotations

from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from portal import auth, membership, models, payments
from portal.database import get_db
from portal.logs import get_logger

router = APIRouter(prefix="/billing", tags=["billing"])
logger = get_logger(__name__)

SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)
INVOICE_PAID_EVENTS = ("invoice.paid", "invoice.payment_succeeded")
INVOICE_FAILED_EVENTS = ("invoice.payment_failed", "invoice.payment_action_required")


def _record_by_metadata(db: Session, md: dict) -> Optional[models.MembershipRecord]:
    user_id = (md or {}).get("user_id")
    if not user_id:
        return None
    try:
        user = db.get(models.User, int(user_id))
    except (TypeError, ValueError):
        return None
    if user is None:
        return None
    return membership.get_or_create_record(db, user)


def _find_record(db: Session, obj: dict) -> Optional[models.MembershipRecord]:
    customer_id = (obj.get("customer") or "").strip()
    record = membership.find_record_by_customer(db, customer_id)
    if record:
        return record

    record = _record_by_metadata(db, obj.get("metadata") or {})
    if record:
        return record

    sub_id = (obj.get("subscription") or "").strip()
    if sub_id:
        record = membership.find_record_by_subscription(db, sub_id)
        if record:
            return record
        sub = payments.retrieve_subscription(sub_id)
        if sub is not None:
            cust = (sub.get("customer") or "").strip()
            return membership.find_record_by_customer(db, cust) or _record_by_metadata(db, sub.get("metadata") or {})

    return None


# -----------------------------
# Webhook (public): disabled when BILLING_ENABLED=false
# -----------------------------
@router.post("/stripe/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    settings = auth.get_settings(request)
    payments.init_stripe(settings)
    wh_secret = payments.webhook_secret(settings)

    payload = await request.body()
    sig = request.headers.get("stripe-signature")
    if not sig:
        raise HTTPException(status_code=400, detail="Missing Stripe signature header")

    try:
        event = stripe.Webhook.construct_event(payload=payload, sig_header=sig, secret=wh_secret)
    except (ValueError, stripe.SignatureVerificationError):
        logger.warning("stripe_webhook_rejected")
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook signature")

    etype = (event.get("type") or "").strip()
    obj = event.get("data", {}).get("object", {}) or {}
    logger.info("stripe_webhook_received", type=etype, object_id=obj.get("id"))

    record = _find_record(db, obj)
    if not record:
        return {"ok": True, "ignored": True, "type": etype}

    if etype == "payment_intent.succeeded":
        if not membership.already_applied(record, obj):
            membership.apply_payment_confirmation(db, record, obj)
        return {"ok": True}

    if etype in SUBSCRIPTION_EVENTS:
        membership.apply_subscription_update(db, record, obj)
        return {"ok": True}

    if etype in INVOICE_FAILED_EVENTS:
        record.subscription_status = "past_due"
        db.commit()
        return {"ok": True}

    if etype in INVOICE_PAID_EVENTS:
        sub_id = (obj.get("subscription") or "").strip() or (record.subscription_id or "").strip()
        sub = payments.retrieve_subscription(sub_id) if sub_id else None
        if sub is not None:
            membership.apply_subscription_update(db, record, sub)
        else:
            record.subscription_status = "active"
            record.has_membership = True
            db.commit()

        record.invoice_id = obj.get("id") or record.invoice_id
        record.receipt_url = obj.get("hosted_invoice_url") or record.receipt_url
        db.commit()
        return {"ok": True}

    return {"ok": True, "ignored": True, "type": etype}
