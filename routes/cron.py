import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException

from core.config import settings
from core.dependencies import get_gate, get_store
from core.errors import BillingError, log_error
from core.security import verify_cron_secret
from models.models import utcnow
from schemas.subscription_schema import EventPurgeResult, TrialExpiryResult, UsageResetResult
from services import trial_service
from services.entitlements import EntitlementGate
from services.store import SubscriptionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.get("/check-trial-expiry", response_model=TrialExpiryResult)
def check_trial_expiry(store: SubscriptionStore = Depends(get_store)):
    """Downgrade expired no-card trials to freemium."""
    try:
        return trial_service.expire_trials(store)
    except BillingError as e:
        log_error(e, operation="cron.check_trial_expiry")
        raise HTTPException(status_code=500, detail=e.public_message)


@router.post("/reset-monthly-usage", response_model=UsageResetResult)
def reset_monthly_usage(gate: EntitlementGate = Depends(get_gate)):
    try:
        return UsageResetResult(reset=gate.reset_monthly_usage())
    except BillingError as e:
        log_error(e, operation="cron.reset_monthly_usage")
        raise HTTPException(status_code=500, detail=e.public_message)


@router.post("/purge-webhook-events", response_model=EventPurgeResult)
def purge_webhook_events(store: SubscriptionStore = Depends(get_store)):
    """Trim the webhook delivery log to the retention window."""
    cutoff = utcnow() - timedelta(days=settings.WEBHOOK_EVENT_RETENTION_DAYS)
    try:
        with store.transaction():
            purged = store.purge_webhook_events(cutoff)
    except BillingError as e:
        log_error(e, operation="cron.purge_webhook_events")
        raise HTTPException(status_code=500, detail=e.public_message)

    logger.info(f"🧹 Purged {purged} webhook event(s) received before {cutoff.isoformat()}")
    return EventPurgeResult(purged=purged, cutoff=cutoff)
