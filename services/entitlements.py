# ================================================================
# services/entitlements.py: Entitlement Gate (read side)
# ================================================================
"""
What the rest of the application asks before letting a user act.

Answers fail closed: no row, a failed read or a failed repair all deny.
A row left half-written by a checkout (subscription id but no price id) is
repaired from Stripe before the question is answered.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from core.errors import BillingError, MissingLocalSubscription, log_error
from models.models import ENTITLED_STATUSES, Subscription, UsageKind, utcnow
from schemas.subscription_schema import EntitlementDecision
from services.catalog import UNLIMITED
from services.reconciler import SubscriptionReconciler
from services.store import SubscriptionStore

logger = logging.getLogger(__name__)

USAGE_PERIOD = timedelta(days=30)


def _check_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError("amount must be a positive integer")


class EntitlementGate:
    def __init__(self, store: SubscriptionStore, reconciler: SubscriptionReconciler):
        self.store = store
        self.reconciler = reconciler

    # ------------------------
    # Reads
    # ------------------------
    def get_subscription(self, user_id: str) -> Optional[Subscription]:
        """Current row for ``user_id``, repaired first if it needs it."""
        row = self.store.get_by_user(user_id)
        if row is not None and row.needs_repair:
            row = self.reconciler.repair_subscription(row)
        return row

    def _load(self, user_id: str):
        try:
            return self.get_subscription(user_id), None
        except BillingError as e:
            log_error(e, operation="entitlements.load", user_id=user_id)
            return None, EntitlementDecision.deny("subscription_unavailable")

    def can_post(self, user_id: str) -> EntitlementDecision:
        row, denied = self._load(user_id)
        if denied:
            return denied
        if row is None:
            return EntitlementDecision.deny("no_subscription")
        if row.status not in ENTITLED_STATUSES:
            return EntitlementDecision.deny(f"subscription_{row.status}")

        limit = row.max_posts_per_month
        current = row.posts_used_this_month
        if limit != UNLIMITED and current >= limit:
            return EntitlementDecision.deny("post_limit_reached", current=current, limit=limit)
        return EntitlementDecision.allow(current=current, limit=limit)

    def can_consume_credits(self, user_id: str, amount: int = 1) -> EntitlementDecision:
        _check_amount(amount)

        row, denied = self._load(user_id)
        if denied:
            return denied
        if row is None:
            return EntitlementDecision.deny("no_subscription")

        allotment = row.max_ai_credits_per_month
        used = row.ai_credits_used_this_month
        if allotment == UNLIMITED:
            return EntitlementDecision.allow(current=used, limit=UNLIMITED)

        try:
            purchased = self.store.get_purchased_credits(user_id)
        except BillingError as e:
            log_error(e, operation="entitlements.purchased_credits", user_id=user_id)
            return EntitlementDecision.deny("subscription_unavailable")

        limit = allotment + purchased
        if limit - used < amount:
            return EntitlementDecision.deny("insufficient_credits", current=used, limit=limit)
        return EntitlementDecision.allow(current=used, limit=limit)

    def can_add_client(self, user_id: str) -> EntitlementDecision:
        row, denied = self._load(user_id)
        if denied:
            return denied
        if row is None:
            return EntitlementDecision.deny("no_subscription")

        limit = row.max_clients
        current = row.clients_used
        if limit != UNLIMITED and current >= limit:
            return EntitlementDecision.deny("client_limit_reached", current=current, limit=limit)
        return EntitlementDecision.allow(current=current, limit=limit)

    # ------------------------
    # Usage counters
    # ------------------------
    def increment_usage(self, user_id: str, kind: UsageKind, amount: int = 1) -> None:
        _check_amount(amount)
        with self.store.transaction() as store:
            if not store.increment_usage(user_id, kind, amount):
                raise MissingLocalSubscription(f"No subscription for user {user_id}")

    def decrement_usage(self, user_id: str, kind: UsageKind, amount: int = 1) -> None:
        _check_amount(amount)
        with self.store.transaction() as store:
            if not store.decrement_usage(user_id, kind, amount):
                raise MissingLocalSubscription(f"No subscription for user {user_id}")

    def reset_monthly_usage(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self.store.transaction() as store:
            reset = store.reset_monthly_usage(now - USAGE_PERIOD, now)
        logger.info(f"🔄 Reset monthly usage for {reset} subscription(s)")
        return reset
