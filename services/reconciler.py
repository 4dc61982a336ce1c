# ================================================================
# services/reconciler.py: Subscription state from Stripe events
# ================================================================
"""
Keeps the local Subscription row in line with Stripe.

Every authoritative write is the same full-state upsert keyed by customer id,
so applying events twice or in any order converges on the same row. Usage
counters are never touched here.
"""
import logging
from typing import Optional

from core.errors import EmailDeliveryFailed, MissingLocalSubscription, UpstreamLookupFailed, log_error
from models.models import Subscription
from schemas.event_schema import CheckoutSessionData, HandlerOutcome, SubscriptionState
from services.catalog import TierCatalog
from services.credit_ledger import CreditLedger
from services.email_service import EmailService
from services.processor_client import StripeProcessor
from services.store import SubscriptionStore

logger = logging.getLogger(__name__)


class SubscriptionReconciler:
    def __init__(
        self,
        store: SubscriptionStore,
        processor: StripeProcessor,
        catalog: TierCatalog,
        ledger: Optional[CreditLedger] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.store = store
        self.processor = processor
        self.catalog = catalog
        self.ledger = ledger or CreditLedger(store, catalog)
        self.email_service = email_service

    # ------------------------
    # checkout.session.completed
    # ------------------------
    def handle_checkout_completed(self, session: CheckoutSessionData) -> HandlerOutcome:
        user_id = session.user_id
        if not user_id:
            raise MissingLocalSubscription(
                f"Checkout session {session.session_id} has no userId metadata",
                session_id=session.session_id,
            )

        if session.is_credit_purchase:
            return self.ledger.apply_checkout(session)

        if not session.customer_id:
            raise MissingLocalSubscription(
                f"Checkout session {session.session_id} has no customer",
                session_id=session.session_id,
            )

        state: Optional[SubscriptionState] = None
        if session.subscription_id:
            try:
                state = self.processor.retrieve_subscription(session.subscription_id)
            except UpstreamLookupFailed as e:
                if e.retryable:
                    raise
                # Stripe refused the lookup itself; a redelivery would get the same answer
                log_error(e, operation="checkout.retrieve_subscription", session_id=session.session_id)

        customer_id = state.customer_id if state else session.customer_id
        with self.store.transaction() as store:
            if store.rebind_customer(user_id, customer_id):
                logger.info(f"🔁 Moved subscription of user {user_id} onto customer {customer_id}")

            if state is not None:
                self._apply(store, user_id, state, session.customer_email)
            else:
                tier = self.catalog.default_tier
                store.upsert_checkout_fallback(
                    user_id,
                    customer_id,
                    session.subscription_id,
                    tier,
                    self.catalog.limits_for(tier),
                    session.customer_email,
                )
                logger.warning(f"⚠️ Checkout {session.session_id} stored on '{tier}' tier pending repair")

        logger.info(f"✅ Checkout {session.session_id} reconciled for user {user_id}")
        return HandlerOutcome.PROCESSED

    # ------------------------
    # customer.subscription.created / updated
    # ------------------------
    def handle_subscription_change(self, state: SubscriptionState) -> HandlerOutcome:
        with self.store.transaction() as store:
            row = store.get_by_customer(state.customer_id)
            user_id = row.user_id if row else state.user_id
            if not user_id:
                raise MissingLocalSubscription(
                    f"No subscription for customer {state.customer_id} and no userId metadata",
                    subscription_id=state.subscription_id,
                )
            if row is None:
                store.rebind_customer(user_id, state.customer_id)
            written = self._apply(store, user_id, state)

        return HandlerOutcome.PROCESSED if written else HandlerOutcome.IGNORED

    # ------------------------
    # customer.subscription.deleted
    # ------------------------
    def handle_subscription_deleted(self, state: SubscriptionState) -> HandlerOutcome:
        with self.store.transaction() as store:
            if store.mark_canceled(state.customer_id, state.subscription_id):
                logger.info(f"🗑️ Subscription {state.subscription_id} canceled")
                return HandlerOutcome.PROCESSED
            exists = store.get_by_customer(state.customer_id) is not None

        if not exists:
            raise MissingLocalSubscription(
                f"No subscription for customer {state.customer_id} to cancel",
                subscription_id=state.subscription_id,
            )
        logger.info(f"ℹ️ Ignoring deletion of superseded subscription {state.subscription_id}")
        return HandlerOutcome.IGNORED

    # ------------------------
    # customer.subscription.trial_will_end
    # ------------------------
    def handle_trial_will_end(self, state: SubscriptionState) -> HandlerOutcome:
        row = self.store.get_by_customer(state.customer_id)
        if row is None:
            raise MissingLocalSubscription(
                f"No subscription for customer {state.customer_id} with ending trial",
                subscription_id=state.subscription_id,
            )

        trial_end = state.trial_end or row.trial_end
        logger.info(f"⏳ Trial for user {row.user_id} ends {trial_end}")

        if row.customer_email and self.email_service is not None:
            try:
                self.email_service.send_trial_ending_email(row.customer_email, row.tier, trial_end)
            except EmailDeliveryFailed as e:
                log_error(e, operation="trial_will_end.email", user_id=row.user_id)

        return HandlerOutcome.PROCESSED

    # ------------------------
    # Compensating action for half-written rows
    # ------------------------
    def repair_subscription(self, row: Subscription) -> Subscription:
        """
        Re-fetch the authoritative subscription for ``row`` and apply it.
        Raises UpstreamLookupFailed or PersistenceFailed; the row is left as is.
        """
        if not row.subscription_id:
            return row

        user_id = row.user_id
        logger.info(f"🔧 Repairing subscription {row.subscription_id} for user {user_id}")
        state = self.processor.retrieve_subscription(row.subscription_id)
        with self.store.transaction() as store:
            self._apply(store, user_id, state)

        return self.store.get_by_user(user_id)

    def _apply(
        self,
        store: SubscriptionStore,
        user_id: str,
        state: SubscriptionState,
        customer_email: Optional[str] = None,
    ) -> bool:
        tier = self.catalog.resolve_tier(state.price_id)
        written = store.upsert_authoritative(user_id, state, tier, self.catalog.limits_for(tier), customer_email)
        if written:
            logger.info(f"✅ Subscription {state.subscription_id} → {tier}/{state.status.value}")
        else:
            logger.info(f"ℹ️ Ignoring late {state.status.value} for canceled subscription {state.subscription_id}")
        return written
