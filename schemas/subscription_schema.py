# subscription_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime


# ---------------------------
# Subscription
# ---------------------------
class SubscriptionRead(BaseModel):
    user_id: str
    customer_id: str
    subscription_id: Optional[str]
    price_id: Optional[str]
    tier: str
    status: str
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    cancel_at_period_end: bool
    trial_end: Optional[datetime] = None
    max_clients: int
    max_posts_per_month: int
    max_ai_credits_per_month: int
    clients_used: int
    posts_used_this_month: int
    ai_credits_used_this_month: int
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------
# Billing history
# ---------------------------
class BillingRecordRead(BaseModel):
    invoice_id: str
    amount_paid: int
    currency: str
    status: str
    billing_reason: Optional[str]
    invoice_pdf: Optional[str]
    invoice_url: Optional[str]
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    paid_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubscriptionOverview(BaseModel):
    subscription: Optional[SubscriptionRead]
    purchased_credits: int = 0
    billing_history: List[BillingRecordRead] = Field(default_factory=list)


# ---------------------------
# Entitlement decisions
# ---------------------------
class EntitlementDecision(BaseModel):
    allowed: bool
    reason: str
    current: Optional[int] = None
    limit: Optional[int] = Field(default=None, description="-1 means unlimited")

    @classmethod
    def allow(cls, reason: str = "ok", current: Optional[int] = None, limit: Optional[int] = None) -> "EntitlementDecision":
        return cls(allowed=True, reason=reason, current=current, limit=limit)

    @classmethod
    def deny(cls, reason: str, current: Optional[int] = None, limit: Optional[int] = None) -> "EntitlementDecision":
        return cls(allowed=False, reason=reason, current=current, limit=limit)


# ---------------------------
# Trials
# ---------------------------
class TrialStartResponse(BaseModel):
    success: bool
    subscription: SubscriptionRead
    trial_end: datetime


class TrialExpiryResult(BaseModel):
    success: bool = True
    processed: int
    success_count: int = 0
    error_count: int = 0
    errors: Optional[List[str]] = None


class UsageResetResult(BaseModel):
    success: bool = True
    reset: int


class EventPurgeResult(BaseModel):
    success: bool = True
    purged: int
    cutoff: datetime
