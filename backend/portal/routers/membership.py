# portal/routers/membership.py
from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from portal import auth, email_templates, membership, models, payments, plans, schemas
from portal.database import get_db
from portal.emailer import send_email_if_configured
from portal.logs import get_logger

router = APIRouter(tags=["membership"])
logger = get_logger(__name__)

RECEIPT_TIMEOUT_SECONDS = 15.0


def _owned_intent(intent, user: models.User, record: models.MembershipRecord | None) -> bool:
    metadata = intent.get("metadata") or {}
    if str(metadata.get("user_id") or "") == str(user.id):
        return True
    return record is not None and record.payment_intent_id == intent.get("id")


# -----------------------------
# Polling verification (success page)
# -----------------------------
@router.get("/membership/verify", response_model=schemas.VerifyOut)
def verify_membership(
    request: Request,
    payment_intent: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    settings = auth.get_settings(request)
    payments.init_stripe(settings)

    intent = payments.retrieve_payment_intent(payment_intent)
    if intent is None:
        raise HTTPException(status_code=404, detail="Payment not found")

    record = user.membership
    if not _owned_intent(intent, user, record):
        raise HTTPException(status_code=403, detail="Payment not found or does not belong to you")

    if (intent.get("status") or "") != "succeeded":
        raise HTTPException(
            status_code=400,
            detail={"code": "PAYMENT_NOT_SUCCEEDED", "message": "Payment not successful"},
        )

    record = membership.get_or_create_record(db, user)
    if membership.already_applied(record, intent):
        return schemas.VerifyOut(success=True, message="Membership already active")

    membership.apply_payment_confirmation(db, record, intent)

    parts = email_templates.membership_activated(
        settings.smtp_from_name,
        user.name,
        plans.tier_display_name(record.tier),
        record.last_payment_amount,
        record.currency,
        record.current_period_end,
        receipt_url=record.receipt_url,
        base_url=settings.app_base_url,
    )
    if not send_email_if_configured(settings, user.email, parts):
        logger.info("activation_email_not_sent", user_id=user.id)

    return schemas.VerifyOut(success=True, message="Membership activated successfully")


# -----------------------------
# Payment lookup + receipt
# -----------------------------
@router.get("/payment-intent", response_model=schemas.PaymentIntentOut)
def get_payment_intent(
    request: Request,
    payment_intent: str = Query(..., min_length=1),
    user: models.User = Depends(auth.get_current_user),
):
    payments.init_stripe(auth.get_settings(request))

    intent = payments.retrieve_payment_intent(payment_intent)
    if intent is None or not _owned_intent(intent, user, user.membership):
        raise HTTPException(status_code=404, detail="Payment not found")

    return schemas.PaymentIntentOut(
        status=intent.get("status") or "unknown",
        amount=plans.from_minor_units(intent.get("amount")) or 0.0,
        currency=intent.get("currency") or "",
        description=intent.get("description"),
        metadata=dict(intent.get("metadata") or {}),
        created=intent.get("created"),
    )


@router.get("/receipt")
def download_receipt(
    request: Request,
    payment_intent: str = Query(..., min_length=1),
    user: models.User = Depends(auth.get_current_user),
):
    payments.init_stripe(auth.get_settings(request))

    record = user.membership
    if record is None or record.payment_intent_id != payment_intent:
        raise HTTPException(status_code=403, detail="Payment not found or does not belong to you")

    intent = payments.retrieve_payment_intent(payment_intent, expand=["latest_charge"])
    if intent is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    if (intent.get("status") or "") != "succeeded":
        raise HTTPException(status_code=400, detail="Payment not completed yet")

    charge = intent.get("latest_charge")
    receipt_url = charge.get("receipt_url") if isinstance(charge, dict) else None
    if not receipt_url:
        raise HTTPException(status_code=404, detail="Receipt not available yet")

    try:
        resp = httpx.get(receipt_url, timeout=RECEIPT_TIMEOUT_SECONDS, follow_redirects=True)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("receipt_fetch_failed", payment_intent=payment_intent, error=str(e))
        raise HTTPException(status_code=502, detail="Failed to fetch receipt from Stripe")

    return Response(
        content=resp.text,
        media_type="text/html; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="invoice-{payment_intent}.html"',
            "Cache-Control": "no-cache",
        },
    )
