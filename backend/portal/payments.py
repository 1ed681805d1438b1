# portal/payments.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from portal.config import Settings
from portal.exceptions import BillingDisabledError, ConfigurationError, PaymentError
from portal.logs import get_logger
from portal import models, plans

logger = get_logger(__name__)


# -----------------------------
# Stripe config helpers
# -----------------------------
def init_stripe(settings: Settings) -> None:
    if not settings.billing_enabled:
        raise BillingDisabledError("Billing disabled")
    if not settings.stripe_secret_key:
        raise ConfigurationError("Stripe not configured (missing STRIPE_SECRET_KEY)")
    stripe.api_key = settings.stripe_secret_key


def webhook_secret(settings: Settings) -> str:
    if not settings.stripe_webhook_secret:
        raise ConfigurationError("Missing STRIPE_WEBHOOK_SECRET")
    return settings.stripe_webhook_secret


def unix_to_dt(v: Optional[int]) -> Optional[datetime]:
    if not v:
        return None
    try:
        return datetime.utcfromtimestamp(int(v))
    except (TypeError, ValueError, OverflowError):
        return None


def _provider_error(action: str, e: stripe.StripeError) -> PaymentError:
    message = getattr(e, "user_message", None) or str(e) or "Payment provider error"
    logger.error("stripe_call_failed", action=action, error=message)
    return PaymentError(message, detail=action)


# -----------------------------
# Customers
# -----------------------------
def get_or_create_customer(db: Session, user: models.User, record: models.MembershipRecord) -> str:
    if record.customer_id:
        return record.customer_id

    try:
        customer = stripe.Customer.create(
            email=user.email,
            name=user.name or None,
            metadata={"user_id": str(user.id)},
        )
    except stripe.StripeError as e:
        raise _provider_error("customer.create", e)

    record.customer_id = customer["id"]
    db.commit()
    logger.info("stripe_customer_created", user_id=user.id, customer_id=record.customer_id)
    return record.customer_id


# -----------------------------
# One-off payments
# -----------------------------
def create_membership_payment_intent(
    *,
    user: models.User,
    customer_id: str,
    tier: str,
    amount: float,
    currency: str,
    return_url: str,
    payment_method_id: Optional[str] = None,
):
    display = plans.tier_display_name(tier)
    params = {
        "amount": plans.to_minor_units(amount),
        "currency": currency,
        "customer": customer_id,
        "description": f"{display} Payment",
        "metadata": {
            "membership_type": tier,
            "membership_name": display,
            "user_id": str(user.id),
            "user_email": user.email,
        },
        # lets the card be reused for later payments
        "setup_future_usage": "off_session",
    }

    if payment_method_id:
        params["payment_method"] = payment_method_id
        params["confirm"] = True
        params["return_url"] = return_url
    else:
        params["automatic_payment_methods"] = {"enabled": True}

    try:
        return stripe.PaymentIntent.create(**params)
    except stripe.StripeError as e:
        raise _provider_error("payment_intent.create", e)


def retrieve_payment_intent(payment_intent_id: str, expand: Optional[list[str]] = None):
    try:
        if expand:
            return stripe.PaymentIntent.retrieve(payment_intent_id, expand=expand)
        return stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.InvalidRequestError as e:
        logger.info("payment_intent_not_found", payment_intent=payment_intent_id, error=str(e))
        return None
    except stripe.StripeError as e:
        raise _provider_error("payment_intent.retrieve", e)


def retrieve_payment_method(payment_method_id: str):
    try:
        return stripe.PaymentMethod.retrieve(payment_method_id)
    except stripe.InvalidRequestError:
        return None
    except stripe.StripeError as e:
        raise _provider_error("payment_method.retrieve", e)


def attach_payment_method(payment_method_id: str, customer_id: str):
    try:
        return stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
    except stripe.StripeError as e:
        raise _provider_error("payment_method.attach", e)


def detach_payment_method(payment_method_id: str) -> bool:
    try:
        stripe.PaymentMethod.detach(payment_method_id)
        return True
    except stripe.StripeError as e:
        logger.warning("payment_method_detach_failed", payment_method=payment_method_id, error=str(e))
        return False


def set_default_payment_method(customer_id: str, payment_method_id: str) -> bool:
    try:
        stripe.Customer.modify(
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )
        return True
    except stripe.StripeError as e:
        logger.warning("default_payment_method_failed", customer_id=customer_id, error=str(e))
        return False


# -----------------------------
# Yearly subscriptions
# -----------------------------
def get_or_create_product(tier: str):
    product_id = f"membership_{tier}"
    name = plans.tier_display_name(tier)
    try:
        return stripe.Product.retrieve(product_id)
    except stripe.InvalidRequestError as e:
        if getattr(e, "code", None) != "resource_missing":
            raise _provider_error("product.retrieve", e)
    except stripe.StripeError as e:
        raise _provider_error("product.retrieve", e)

    try:
        product = stripe.Product.create(
            id=product_id,
            name=name,
            description=f"{name} - Yearly Subscription",
            metadata={"membership_type": tier},
        )
    except stripe.StripeError as e:
        raise _provider_error("product.create", e)
    logger.info("stripe_product_created", product_id=product_id)
    return product


def get_or_create_price(product_id: str, price: float, currency: str):
    unit_amount = plans.to_minor_units(price)
    try:
        existing = stripe.Price.list(
            product=product_id,
            active=True,
            type="recurring",
            recurring={"interval": "year"},
            limit=100,
        )
        for p in existing.get("data", []) or []:
            recurring = p.get("recurring") or {}
            if (
                p.get("unit_amount") == unit_amount
                and (p.get("currency") or "").lower() == currency
                and recurring.get("interval") == "year"
            ):
                return p

        new_price = stripe.Price.create(
            product=product_id,
            unit_amount=unit_amount,
            currency=currency,
            recurring={"interval": "year"},
            metadata={"membership_type": product_id.replace("membership_", "")},
        )
    except stripe.StripeError as e:
        raise _provider_error("price.create", e)

    logger.info("stripe_price_created", price_id=new_price["id"], product_id=product_id)
    return new_price


def create_membership_subscription(*, user: models.User, customer_id: str, tier: str, price_id: str):
    try:
        subscription = stripe.Subscription.create(
            customer=customer_id,
            items=[{"price": price_id}],
            payment_behavior="default_incomplete",
            payment_settings={
                "save_default_payment_method": "on_subscription",
                "payment_method_types": ["card"],
            },
            expand=["latest_invoice.payment_intent"],
            metadata={"user_id": str(user.id), "membership_type": tier},
        )
    except stripe.StripeError as e:
        raise _provider_error("subscription.create", e)

    invoice = subscription.get("latest_invoice") or {}
    intent = invoice.get("payment_intent") if isinstance(invoice, dict) else None
    if not isinstance(intent, dict) or not intent.get("client_secret"):
        raise PaymentError("Failed to create payment intent for subscription")

    try:
        stripe.PaymentIntent.modify(
            intent["id"],
            metadata={
                "user_id": str(user.id),
                "membership_type": tier,
                "subscription_id": subscription["id"],
            },
        )
    except stripe.StripeError as e:
        raise _provider_error("payment_intent.modify", e)

    return subscription, intent


def retrieve_subscription(subscription_id: str):
    try:
        return stripe.Subscription.retrieve(subscription_id)
    except stripe.StripeError as e:
        logger.warning("subscription_retrieve_failed", subscription_id=subscription_id, error=str(e))
        return None
