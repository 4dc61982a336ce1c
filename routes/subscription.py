from fastapi import APIRouter, Depends, HTTPException

from core.config import settings
from core.dependencies import get_gate, get_store
from core.errors import BillingError, log_error
from core.security import CurrentUser, get_current_user
from schemas.subscription_schema import (
    BillingRecordRead,
    EntitlementDecision,
    SubscriptionOverview,
    SubscriptionRead,
    TrialStartResponse,
)
from services import billing_history, trial_service
from services.entitlements import EntitlementGate
from services.store import SubscriptionStore

router = APIRouter(prefix="/subscription", tags=["Subscription"])


# ============================================================
# 📄 Current subscription + billing history
# ============================================================
@router.get("", response_model=SubscriptionOverview)
def get_subscription(
    current_user: CurrentUser = Depends(get_current_user),
    gate: EntitlementGate = Depends(get_gate),
    store: SubscriptionStore = Depends(get_store),
):
    try:
        row = gate.get_subscription(current_user.user_id)
        credits = store.get_purchased_credits(current_user.user_id)
        history = billing_history.list_billing_history(store, current_user.user_id)
    except BillingError as e:
        log_error(e, operation="subscription.read", user_id=current_user.user_id)
        raise HTTPException(status_code=503, detail=e.public_message)

    return SubscriptionOverview(
        subscription=SubscriptionRead.model_validate(row) if row else None,
        purchased_credits=credits,
        billing_history=[BillingRecordRead.model_validate(r) for r in history],
    )


# ============================================================
# ✅ Entitlement checks
# ============================================================
@router.get("/entitlements/posts", response_model=EntitlementDecision)
def check_posts(current_user: CurrentUser = Depends(get_current_user), gate: EntitlementGate = Depends(get_gate)):
    return gate.can_post(current_user.user_id)


@router.get("/entitlements/clients", response_model=EntitlementDecision)
def check_clients(current_user: CurrentUser = Depends(get_current_user), gate: EntitlementGate = Depends(get_gate)):
    return gate.can_add_client(current_user.user_id)


@router.get("/entitlements/ai-credits", response_model=EntitlementDecision)
def check_ai_credits(
    amount: int = 1,
    current_user: CurrentUser = Depends(get_current_user),
    gate: EntitlementGate = Depends(get_gate),
):
    if amount <= 0:
        raise HTTPException(status_code=422, detail="amount must be positive")
    return gate.can_consume_credits(current_user.user_id, amount)


# ============================================================
# 🎁 No-card trial
# ============================================================
@router.post("/trial", response_model=TrialStartResponse)
def start_trial(current_user: CurrentUser = Depends(get_current_user), store: SubscriptionStore = Depends(get_store)):
    try:
        row = trial_service.start_trial(
            store,
            current_user.user_id,
            email=current_user.email,
            duration_days=settings.TRIAL_DURATION_DAYS,
        )
    except BillingError as e:
        log_error(e, operation="subscription.trial", user_id=current_user.user_id)
        raise HTTPException(status_code=e.status_code, detail=e.public_message)

    return TrialStartResponse(success=True, subscription=SubscriptionRead.model_validate(row), trial_end=row.trial_end)
