import pytest

from core.errors import MissingLocalSubscription
from schemas.event_schema import HandlerOutcome
from services.billing_history import list_billing_history, record_invoice_paid, record_invoice_payment_failed
from services.event_decoder import decode_invoice, decode_subscription
from tests.factories import invoice_object, subscription_object


@pytest.fixture
def subscribed(reconciler, store):
    reconciler.handle_subscription_change(decode_subscription(subscription_object()))
    return store


def test_paid_invoice_recorded_once(subscribed):
    invoice = decode_invoice(invoice_object())

    assert record_invoice_paid(subscribed, invoice) == HandlerOutcome.PROCESSED
    assert record_invoice_paid(subscribed, invoice) == HandlerOutcome.DUPLICATE

    history = list_billing_history(subscribed, "user_1")
    assert len(history) == 1
    assert history[0].invoice_id == "in_1"
    assert history[0].amount_paid == 2900
    assert history[0].user_id == "user_1"


def test_history_newest_first_and_limited(subscribed):
    for n in range(12):
        record_invoice_paid(subscribed, decode_invoice(invoice_object(invoice_id=f"in_{n}")))

    history = list_billing_history(subscribed, "user_1")
    assert len(history) == 10
    assert history[0].invoice_id == "in_11"


def test_paid_invoice_without_local_row(store):
    with pytest.raises(MissingLocalSubscription):
        record_invoice_paid(store, decode_invoice(invoice_object(customer="cus_ghost")))
    assert list_billing_history(store, "user_1") == []


def test_failed_payment_marks_past_due_and_is_not_recorded(subscribed):
    outcome = record_invoice_payment_failed(subscribed, decode_invoice(invoice_object()))

    assert outcome == HandlerOutcome.PROCESSED
    assert subscribed.get_by_user("user_1").status == "past_due"
    assert list_billing_history(subscribed, "user_1") == []


def test_paid_invoice_clears_past_due(subscribed):
    record_invoice_payment_failed(subscribed, decode_invoice(invoice_object(invoice_id="in_failed")))
    record_invoice_paid(subscribed, decode_invoice(invoice_object(invoice_id="in_retry")))

    assert subscribed.get_by_user("user_1").status == "active"


def test_failed_payment_leaves_canceled_row_canceled(subscribed, reconciler):
    reconciler.handle_subscription_deleted(decode_subscription(subscription_object(status="canceled")))

    outcome = record_invoice_payment_failed(subscribed, decode_invoice(invoice_object()))

    assert outcome == HandlerOutcome.IGNORED
    assert subscribed.get_by_user("user_1").status == "canceled"


def test_failed_payment_without_local_row(store):
    with pytest.raises(MissingLocalSubscription):
        record_invoice_payment_failed(store, decode_invoice(invoice_object(customer="cus_ghost")))
