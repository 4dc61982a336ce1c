from .event_schema import (
    CREDIT_PURCHASE, HandlerOutcome,
    SubscriptionState, CheckoutSessionData, InvoiceData,
    CheckoutCompleted, SubscriptionCreatedOrUpdated, SubscriptionDeleted,
    InvoicePaid, InvoicePaymentFailed, TrialWillEnd, Unhandled,
    BillingEvent,
)
from .subscription_schema import (
    SubscriptionRead, BillingRecordRead, SubscriptionOverview,
    EntitlementDecision,
    TrialStartResponse, TrialExpiryResult, UsageResetResult,
)

__all__ = [
    # Events
    "CREDIT_PURCHASE", "HandlerOutcome",
    "SubscriptionState", "CheckoutSessionData", "InvoiceData",
    "CheckoutCompleted", "SubscriptionCreatedOrUpdated", "SubscriptionDeleted",
    "InvoicePaid", "InvoicePaymentFailed", "TrialWillEnd", "Unhandled",
    "BillingEvent",

    # Subscription
    "SubscriptionRead", "BillingRecordRead", "SubscriptionOverview",
    "EntitlementDecision",
    "TrialStartResponse", "TrialExpiryResult", "UsageResetResult",
]
