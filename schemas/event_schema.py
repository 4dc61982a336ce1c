# event_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Literal, Union
from datetime import datetime
from enum import Enum

from models.models import SubscriptionStatus


CREDIT_PURCHASE = "credit_purchase"


class HandlerOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    NO_LOCAL_SUBSCRIPTION = "no_local_subscription"


# ---------------------------
# Decoded Stripe objects
# ---------------------------
class SubscriptionState(BaseModel):
    """Authoritative subscription state as Stripe reports it."""

    model_config = ConfigDict(frozen=True)

    subscription_id: str
    customer_id: str
    price_id: Optional[str] = None
    status: SubscriptionStatus
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    user_id: Optional[str] = Field(default=None, description="metadata.userId set at checkout creation")


class CheckoutSessionData(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    mode: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        return self.metadata.get("userId") or None

    @property
    def is_credit_purchase(self) -> bool:
        return self.metadata.get("type") == CREDIT_PURCHASE


class InvoiceData(BaseModel):
    model_config = ConfigDict(frozen=True)

    invoice_id: str
    customer_id: str
    subscription_id: Optional[str] = None
    amount_paid: int = 0
    currency: str = "usd"
    status: str = "paid"
    billing_reason: Optional[str] = None
    invoice_pdf: Optional[str] = None
    invoice_url: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    paid_at: Optional[datetime] = None


# ---------------------------
# Event variants (closed set)
# ---------------------------
class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: Optional[str] = None
    event_type: str


class CheckoutCompleted(_EventBase):
    kind: Literal["checkout_completed"] = "checkout_completed"
    session: CheckoutSessionData


class SubscriptionCreatedOrUpdated(_EventBase):
    kind: Literal["subscription_changed"] = "subscription_changed"
    subscription: SubscriptionState


class SubscriptionDeleted(_EventBase):
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    subscription: SubscriptionState


class InvoicePaid(_EventBase):
    kind: Literal["invoice_paid"] = "invoice_paid"
    invoice: InvoiceData


class InvoicePaymentFailed(_EventBase):
    kind: Literal["invoice_payment_failed"] = "invoice_payment_failed"
    invoice: InvoiceData


class TrialWillEnd(_EventBase):
    kind: Literal["trial_will_end"] = "trial_will_end"
    subscription: SubscriptionState


class Unhandled(_EventBase):
    """Any event type this service does not act on. Acknowledged without side effects."""

    kind: Literal["unhandled"] = "unhandled"


BillingEvent = Union[
    CheckoutCompleted,
    SubscriptionCreatedOrUpdated,
    SubscriptionDeleted,
    InvoicePaid,
    InvoicePaymentFailed,
    TrialWillEnd,
    Unhandled,
]
