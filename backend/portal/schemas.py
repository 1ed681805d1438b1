# portal/schemas.py
from datetime import datetime
from typing import Optional, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from portal import plans
from portal.auth import MIN_PASSWORD_LENGTH

MembershipTier = Literal["internal", "external"]


# -----------------------------
# AUTH
# -----------------------------
class SignupIn(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)

    @field_validator("name")
    @classmethod
    def _name_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("name is required")
        return v


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: EmailStr
    created_at: datetime


class SessionOut(BaseModel):
    subject_id: int
    provider: str
    established_at: datetime
    expires_at: datetime


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    session: SessionOut


class SsoLoginIn(BaseModel):
    id_token: str = Field(min_length=1)


# -----------------------------
# SESSION (render-state contract)
# -----------------------------
class SessionStateOut(BaseModel):
    remaining_seconds: Optional[int] = None
    warning_active: bool = False
    warning_seconds_left: int = 0
    status: str
    ended: bool = False
    end_reason: Optional[str] = None
    redirect_to: Optional[str] = None


class ActivityIn(BaseModel):
    kind: Literal["pointer", "key", "touch", "scroll"] = "pointer"
    path: Optional[str] = None


# -----------------------------
# MEMBERSHIP / PAYMENTS
# -----------------------------
class MembershipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    membership_type: str = Field(default=plans.TIER_EXTERNAL, validation_alias="tier")
    customer_id: Optional[str] = None
    price: Optional[float] = Field(default=None, validation_alias="last_payment_amount")
    currency: Optional[str] = None
    last_payment_date: Optional[datetime] = Field(default=None, validation_alias="last_payment_at")
    payment_intent_id: Optional[str] = None
    invoice_id: Optional[str] = None
    receipt_url: Optional[str] = None
    subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    membership_start_date: Optional[datetime] = Field(default=None, validation_alias="membership_start")
    current_period_end: Optional[datetime] = None
    has_membership: bool = False
    # paid and still inside the current period
    active: bool = False


class SavedPaymentMethodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_method_id: str
    last4: str
    brand: str
    expiry_month: int
    expiry_year: int
    is_default: bool = False
    saved_at: datetime


class DashboardOut(BaseModel):
    id: int
    name: str
    email: EmailStr
    membership_details: MembershipOut
    payment_methods: list[SavedPaymentMethodOut] = []
    created_at: datetime
    updated_at: Optional[datetime] = None


class CheckoutIn(BaseModel):
    amount: float = Field(gt=0)
    membership_type: MembershipTier
    currency: str = plans.DEFAULT_CURRENCY
    payment_method_id: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _currency_supported(cls, v: str) -> str:
        c = plans.normalize_currency(v)
        if not c:
            raise ValueError("Unsupported currency")
        return c


class CheckoutOut(BaseModel):
    client_secret: Optional[str] = None
    payment_intent_id: str
    status: str


class SubscriptionIn(BaseModel):
    membership_type: MembershipTier
    price: float = Field(gt=0)
    currency: str = plans.DEFAULT_CURRENCY

    @field_validator("currency")
    @classmethod
    def _currency_supported(cls, v: str) -> str:
        c = plans.normalize_currency(v)
        if not c:
            raise ValueError("Unsupported currency")
        return c


class SubscriptionOut(BaseModel):
    subscription_id: str
    client_secret: str
    customer_id: str


class PaymentIntentOut(BaseModel):
    status: str
    amount: float
    currency: str
    description: Optional[str] = None
    metadata: dict = {}
    created: Optional[int] = None


class VerifyOut(BaseModel):
    success: bool
    message: str


class SavePaymentMethodIn(BaseModel):
    payment_intent_id: str = Field(min_length=1)


class UpdatePaymentMethodIn(BaseModel):
    payment_method_id: str = Field(min_length=1)
    is_default: Optional[bool] = None


class PaymentMethodResult(BaseModel):
    message: str
    payment_method: Optional[SavedPaymentMethodOut] = None


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    detail: Optional[str] = None
