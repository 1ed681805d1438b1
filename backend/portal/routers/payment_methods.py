# portal/routers/payment_methods.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from portal import auth, models, payments, schemas
from portal.database import get_db
from portal.exceptions import PaymentError
from portal.logs import get_logger

router = APIRouter(prefix="/payment-methods", tags=["payment-methods"])
logger = get_logger(__name__)


def _find_saved(user: models.User, payment_method_id: str) -> Optional[models.SavedPaymentMethod]:
    for pm in user.payment_methods:
        if pm.payment_method_id == payment_method_id:
            return pm
    return None


@router.get("", response_model=list[schemas.SavedPaymentMethodOut])
def list_payment_methods(user: models.User = Depends(auth.get_current_user)):
    return user.payment_methods


@router.post("", response_model=schemas.PaymentMethodResult)
def save_payment_method(
    payload: schemas.SavePaymentMethodIn,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    """
    Save the card used for a finished payment. The first saved card becomes
    the default.
    """
    payments.init_stripe(auth.get_settings(request))

    intent = payments.retrieve_payment_intent(payload.payment_intent_id)
    if intent is None:
        raise HTTPException(status_code=404, detail="Payment not found")

    pm_id = intent.get("payment_method")
    if isinstance(pm_id, dict):
        pm_id = pm_id.get("id")
    if not pm_id:
        raise HTTPException(status_code=400, detail="No payment method found in payment intent")

    existing = _find_saved(user, pm_id)
    if existing is not None:
        return schemas.PaymentMethodResult(
            message="Payment method already saved",
            payment_method=schemas.SavedPaymentMethodOut.model_validate(existing),
        )

    record = user.membership
    customer_id = record.customer_id if record is not None else None
    if not customer_id:
        raise HTTPException(status_code=400, detail="No customer ID found")

    pm = payments.retrieve_payment_method(pm_id)
    if pm is None:
        raise HTTPException(status_code=404, detail="Payment method not found")

    if pm.get("customer") != customer_id:
        try:
            payments.attach_payment_method(pm_id, customer_id)
        except PaymentError:
            raise HTTPException(
                status_code=400,
                detail=(
                    "This payment method cannot be saved. "
                    "Please make a new payment with the 'Save card' option enabled."
                ),
            )

    card = pm.get("card")
    if not card:
        raise HTTPException(status_code=400, detail="Not a card payment method")

    saved = models.SavedPaymentMethod(
        user_id=user.id,
        payment_method_id=pm_id,
        last4=str(card.get("last4") or ""),
        brand=str(card.get("brand") or "card"),
        expiry_month=int(card.get("exp_month") or 0),
        expiry_year=int(card.get("exp_year") or 0),
        is_default=len(user.payment_methods) == 0,
    )
    user.payment_methods.append(saved)
    db.commit()
    db.refresh(saved)
    logger.info("payment_method_saved", user_id=user.id, payment_method=pm_id, brand=saved.brand)

    return schemas.PaymentMethodResult(
        message="Payment method saved successfully",
        payment_method=schemas.SavedPaymentMethodOut.model_validate(saved),
    )


@router.patch("", response_model=schemas.PaymentMethodResult)
def update_payment_method(
    payload: schemas.UpdatePaymentMethodIn,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    target = _find_saved(user, payload.payment_method_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Payment method not found")

    if payload.is_default is True:
        for pm in user.payment_methods:
            pm.is_default = pm.payment_method_id == payload.payment_method_id

        record = user.membership
        settings = auth.get_settings(request)
        if record is not None and record.customer_id and settings.billing_enabled and settings.stripe_secret_key:
            # local default wins even if Stripe refuses
            payments.init_stripe(settings)
            payments.set_default_payment_method(record.customer_id, payload.payment_method_id)

    db.commit()
    db.refresh(target)

    return schemas.PaymentMethodResult(
        message="Payment method updated successfully",
        payment_method=schemas.SavedPaymentMethodOut.model_validate(target),
    )


@router.delete("", response_model=schemas.PaymentMethodResult)
def delete_payment_method(
    request: Request,
    payment_method_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    target = _find_saved(user, payment_method_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Payment method not found")

    user.payment_methods.remove(target)
    db.commit()

    settings = auth.get_settings(request)
    if settings.billing_enabled and settings.stripe_secret_key:
        payments.init_stripe(settings)
        payments.detach_payment_method(payment_method_id)

    logger.info("payment_method_deleted", user_id=user.id, payment_method=payment_method_id)
    return schemas.PaymentMethodResult(message="Payment method deleted successfully")
