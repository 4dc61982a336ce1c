# ================================================================
# services/billing_history.py: Invoice history recorder
# ================================================================
import logging
from typing import List

from core.errors import MissingLocalSubscription
from models.models import BillingRecord
from schemas.event_schema import HandlerOutcome, InvoiceData
from services.store import SubscriptionStore

logger = logging.getLogger(__name__)


def record_invoice_paid(store: SubscriptionStore, invoice: InvoiceData) -> HandlerOutcome:
    """Append the invoice once; a paid invoice also clears past_due."""
    with store.transaction():
        row = store.get_by_customer(invoice.customer_id)
        if row is None:
            raise MissingLocalSubscription(
                f"No subscription for customer {invoice.customer_id}, invoice {invoice.invoice_id} not recorded",
                invoice_id=invoice.invoice_id,
            )

        inserted = store.insert_billing_record(row.user_id, invoice)
        if store.reactivate_past_due(invoice.customer_id):
            logger.info(f"✅ Customer {invoice.customer_id} back to active after payment")

    if not inserted:
        logger.info(f"ℹ️ Invoice {invoice.invoice_id} already recorded")
        return HandlerOutcome.DUPLICATE

    logger.info(f"✅ Recorded invoice {invoice.invoice_id} ({invoice.amount_paid} {invoice.currency}) for user {row.user_id}")
    return HandlerOutcome.PROCESSED


def record_invoice_payment_failed(store: SubscriptionStore, invoice: InvoiceData) -> HandlerOutcome:
    """Failed payments are not added to history; the row goes past_due."""
    with store.transaction():
        if store.get_by_customer(invoice.customer_id) is None:
            raise MissingLocalSubscription(
                f"No subscription for customer {invoice.customer_id} on failed invoice {invoice.invoice_id}",
                invoice_id=invoice.invoice_id,
            )
        changed = store.mark_past_due(invoice.customer_id)

    if not changed:
        logger.info(f"ℹ️ Payment failed for canceled customer {invoice.customer_id}, status left as is")
        return HandlerOutcome.IGNORED

    logger.warning(f"⚠️ Payment failed for customer {invoice.customer_id}, marked past_due")
    return HandlerOutcome.PROCESSED


def list_billing_history(store: SubscriptionStore, user_id: str, limit: int = 10) -> List[BillingRecord]:
    return store.list_billing_records(user_id, limit=limit)
