# ================================================================
# services/trial_service.py: No-card trials and their expiry
# ================================================================
import logging
from datetime import datetime, timedelta
from typing import Optional

from core.errors import BillingError, log_error
from models.models import Subscription, SubscriptionTier, utcnow
from schemas.subscription_schema import TrialExpiryResult
from services.catalog import TIER_LIMITS
from services.store import SubscriptionStore

logger = logging.getLogger(__name__)


class TrialAlreadyUsed(BillingError):
    status_code = 400
    public_message = "You already have a subscription or have used your trial"


def start_trial(
    store: SubscriptionStore,
    user_id: str,
    email: Optional[str] = None,
    duration_days: int = 14,
    now: Optional[datetime] = None,
) -> Subscription:
    now = now or utcnow()
    end = now + timedelta(days=duration_days)

    with store.transaction():
        created = store.insert_trial(user_id, email, now, end, TIER_LIMITS[SubscriptionTier.TRIAL.value])
        if not created:
            raise TrialAlreadyUsed(f"User {user_id} already has a subscription")

    logger.info(f"✅ Started {duration_days}-day trial for user {user_id}, ends {end}")
    return store.get_by_user(user_id)


def expire_trials(store: SubscriptionStore, now: Optional[datetime] = None) -> TrialExpiryResult:
    """Downgrade every expired no-card trial to freemium. Safe to run repeatedly."""
    now = now or utcnow()
    expired = store.list_expired_trials(now)
    if not expired:
        logger.info("ℹ️ No expired trials found")
        return TrialExpiryResult(processed=0)

    limits = TIER_LIMITS[SubscriptionTier.FREEMIUM.value]
    success_count = 0
    errors = []
    for row in expired:
        row_id, user_id = row.id, row.user_id
        try:
            with store.transaction():
                if store.downgrade_trial(row_id, now, limits):
                    success_count += 1
                    logger.info(f"✅ Downgraded expired trial for user {user_id} to freemium")
        except BillingError as e:
            log_error(e, operation="expire_trials", user_id=user_id)
            errors.append(f"{user_id}: {e.public_message}")

    return TrialExpiryResult(
        success=not errors,
        processed=len(expired),
        success_count=success_count,
        error_count=len(errors),
        errors=errors or None,
    )
