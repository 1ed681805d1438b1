# portal/routers/checkout.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from portal import auth, membership, models, payments, plans, schemas
from portal.database import get_db
from portal.logs import get_logger

router = APIRouter(tags=["checkout"])
logger = get_logger(__name__)


def _check_saved_card(payment_method_id: str, customer_id: str) -> None:
    pm = payments.retrieve_payment_method(payment_method_id)
    if pm is None:
        raise HTTPException(status_code=400, detail="Payment method not found")
    owner = pm.get("customer")
    if not owner:
        raise HTTPException(status_code=400, detail="Payment method is not attached to any customer")
    if owner != customer_id:
        raise HTTPException(status_code=400, detail="Invalid payment method")


# -----------------------------
# One-off yearly payment
# -----------------------------
@router.post("/checkout", response_model=schemas.CheckoutOut)
def create_checkout(
    payload: schemas.CheckoutIn,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    settings = auth.get_settings(request)
    payments.init_stripe(settings)

    record = membership.get_or_create_record(db, user)
    customer_id = payments.get_or_create_customer(db, user, record)

    if payload.payment_method_id:
        _check_saved_card(payload.payment_method_id, customer_id)

    intent = payments.create_membership_payment_intent(
        user=user,
        customer_id=customer_id,
        tier=payload.membership_type,
        amount=payload.amount,
        currency=payload.currency,
        return_url=f"{settings.app_base_url}/success",
        payment_method_id=payload.payment_method_id,
    )

    membership.record_pending_payment(
        db,
        record,
        tier=payload.membership_type,
        amount=payload.amount,
        currency=payload.currency,
        payment_intent_id=intent["id"],
    )
    logger.info(
        "checkout_created",
        user_id=user.id,
        payment_intent=intent["id"],
        status=intent.get("status"),
        tier=payload.membership_type,
    )

    return schemas.CheckoutOut(
        client_secret=intent.get("client_secret"),
        payment_intent_id=intent["id"],
        status=intent.get("status") or "unknown",
    )


# -----------------------------
# Yearly subscription
# -----------------------------
@router.post("/membership/subscription", response_model=schemas.SubscriptionOut)
def create_subscription(
    payload: schemas.SubscriptionIn,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    payments.init_stripe(auth.get_settings(request))

    record = membership.get_or_create_record(db, user)
    if plans.is_active_status(record.subscription_status) and record.has_membership:
        raise HTTPException(
            status_code=400,
            detail={"code": "ALREADY_SUBSCRIBED", "message": "Subscription already active"},
        )

    customer_id = payments.get_or_create_customer(db, user, record)
    product = payments.get_or_create_product(payload.membership_type)
    price = payments.get_or_create_price(product["id"], payload.price, payload.currency)

    subscription, intent = payments.create_membership_subscription(
        user=user,
        customer_id=customer_id,
        tier=payload.membership_type,
        price_id=price["id"],
    )

    record.subscription_id = subscription["id"]
    record.subscription_status = subscription.get("status") or "incomplete"
    record.tier = payload.membership_type
    db.commit()
    logger.info("subscription_created", user_id=user.id, subscription_id=subscription["id"])

    return schemas.SubscriptionOut(
        subscription_id=subscription["id"],
        client_secret=intent["client_secret"],
        customer_id=customer_id,
    )
