# ================================================================
# services/webhook_dispatcher.py: Verified event → handler → response
# ================================================================
import logging
from typing import Any, Dict, Tuple

from core.errors import BillingError, MissingLocalSubscription, log_error
from schemas.event_schema import BillingEvent, HandlerOutcome
from services import billing_history
from services.event_decoder import decode_event
from services.reconciler import SubscriptionReconciler
from services.store import SubscriptionStore

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """
    Routes each decoded event to exactly one handler and turns the result into
    the (status code, body) the webhook returns. 2xx tells Stripe to stop;
    5xx makes it redeliver.
    """

    def __init__(self, store: SubscriptionStore, reconciler: SubscriptionReconciler):
        self.store = store
        self.reconciler = reconciler
        self._handlers = {
            "checkout_completed": lambda e: reconciler.handle_checkout_completed(e.session),
            "subscription_changed": lambda e: reconciler.handle_subscription_change(e.subscription),
            "subscription_deleted": lambda e: reconciler.handle_subscription_deleted(e.subscription),
            "trial_will_end": lambda e: reconciler.handle_trial_will_end(e.subscription),
            "invoice_paid": lambda e: billing_history.record_invoice_paid(store, e.invoice),
            "invoice_payment_failed": lambda e: billing_history.record_invoice_payment_failed(store, e.invoice),
        }

    def handle(self, event: BillingEvent) -> HandlerOutcome:
        handler = self._handlers.get(event.kind)
        if handler is None:
            return HandlerOutcome.IGNORED
        return handler(event)

    def dispatch(self, envelope: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        event_id = envelope.get("id") if isinstance(envelope.get("id"), str) else None
        event_type = envelope.get("type")

        try:
            if event_id and self.store.is_event_processed(event_id):
                logger.info(f"ℹ️ Event {event_id} already processed, acknowledging")
                return 200, self._ack(event_type, HandlerOutcome.DUPLICATE)

            event = decode_event(envelope)
            outcome = self.handle(event)
        except MissingLocalSubscription as e:
            log_error(e, operation=f"webhook.{event_type}", event_id=event_id)
            self._record(event_id, event_type)
            return 200, self._ack(event_type, HandlerOutcome.NO_LOCAL_SUBSCRIPTION)
        except BillingError as e:
            log_error(e, operation=f"webhook.{event_type}", event_id=event_id)
            self._record(event_id, event_type, error=f"{type(e).__name__}: {e}")
            return e.status_code, {"error": e.public_message}
        except Exception as e:
            log_error(e, operation=f"webhook.{event_type}", event_id=event_id)
            self._record(event_id, event_type, error=type(e).__name__)
            return 500, {"error": BillingError.public_message}

        self._record(event_id, event_type)
        logger.info(f"✅ Webhook {event_type} ({event_id}): {outcome.value}")
        return 200, self._ack(event_type, outcome)

    @staticmethod
    def _ack(event_type, outcome: HandlerOutcome) -> Dict[str, Any]:
        return {"received": True, "event": event_type, "outcome": outcome.value}

    def _record(self, event_id, event_type, error=None) -> None:
        """Delivery log only; a failure here never changes the response."""
        if not event_id or not isinstance(event_type, str):
            return
        try:
            if error is not None:
                self.store.session.rollback()
            with self.store.transaction() as store:
                store.record_event(event_id, event_type, error=error)
        except BillingError as e:
            log_error(e, operation="webhook.record_event", event_id=event_id)
