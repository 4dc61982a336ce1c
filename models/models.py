# models/models.py
from typing import Optional
from datetime import datetime
from enum import Enum
from sqlalchemy import CheckConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.utcnow()


# ============================================================
# ENUMS
# ============================================================
class SubscriptionTier(str, Enum):
    FREEMIUM = "freemium"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    AGENCY = "agency"
    TRIAL = "trial"


class SubscriptionStatus(str, Enum):
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    PAUSED = "paused"
    CANCELED = "canceled"


# Statuses under which the monthly allotment may be spent
ENTITLED_STATUSES = {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value}


class UsageKind(str, Enum):
    CLIENTS = "clients"
    POSTS = "posts"
    AI_CREDITS = "ai_credits"


# ============================================================
# SUBSCRIPTION (one row per paying user)
# ============================================================
class Subscription(SQLModel, table=True):
    __tablename__ = "subscription"
    __table_args__ = (
        CheckConstraint("clients_used >= 0", name="ck_subscription_clients_used_nonneg"),
        CheckConstraint("posts_used_this_month >= 0", name="ck_subscription_posts_used_nonneg"),
        CheckConstraint("ai_credits_used_this_month >= 0", name="ck_subscription_ai_credits_used_nonneg"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(max_length=255, unique=True, index=True, nullable=False)
    customer_id: str = Field(max_length=255, unique=True, index=True, nullable=False)
    customer_email: Optional[str] = Field(default=None, max_length=255)

    subscription_id: Optional[str] = Field(default=None, max_length=255, unique=True, index=True)
    price_id: Optional[str] = Field(default=None, max_length=255)

    tier: str = Field(default=SubscriptionTier.STARTER.value, max_length=20, index=True)
    status: str = Field(default=SubscriptionStatus.INCOMPLETE.value, max_length=20, index=True)
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    cancel_at_period_end: bool = Field(default=False)

    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None

    # Limits (-1 = unlimited)
    max_clients: int = Field(default=1)
    max_posts_per_month: int = Field(default=30)
    max_ai_credits_per_month: int = Field(default=100)

    # Usage, written only by the atomic counter operations
    clients_used: int = Field(default=0, ge=0)
    posts_used_this_month: int = Field(default=0, ge=0)
    ai_credits_used_this_month: int = Field(default=0, ge=0)
    usage_reset_at: datetime = Field(default_factory=utcnow)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def needs_repair(self) -> bool:
        """A subscription id without a price id means a reconciliation only half-finished."""
        return bool(self.subscription_id) and not self.price_id


# ============================================================
# BILLING HISTORY (append-only)
# ============================================================
class BillingRecord(SQLModel, table=True):
    __tablename__ = "billing_record"

    id: Optional[int] = Field(default=None, primary_key=True)
    invoice_id: str = Field(max_length=255, unique=True, index=True, nullable=False)
    user_id: str = Field(max_length=255, index=True, nullable=False)
    customer_id: str = Field(max_length=255, index=True, nullable=False)

    amount_paid: int = Field(default=0)  # minor units
    currency: str = Field(default="usd", max_length=3)
    status: str = Field(default="paid", max_length=20)
    billing_reason: Optional[str] = Field(default=None, max_length=50)
    invoice_pdf: Optional[str] = None
    invoice_url: Optional[str] = None

    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================
# PURCHASED CREDITS
# ============================================================
class CreditBalance(SQLModel, table=True):
    __tablename__ = "credit_balance"

    user_id: str = Field(max_length=255, primary_key=True)
    purchased_credits: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)


class ProcessedCheckoutSession(SQLModel, table=True):
    """Idempotency key: a checkout session id is credited at most once."""

    __tablename__ = "processed_checkout_session"

    session_id: str = Field(max_length=255, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    credits: int = Field(default=0)
    processed_at: datetime = Field(default_factory=utcnow)


# ============================================================
# WEBHOOK DELIVERY LOG
# ============================================================
class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_event"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: str = Field(unique=True, index=True, max_length=255)
    event_type: str = Field(max_length=100, index=True)
    processed: bool = Field(default=False)
    processing_error: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
