from datetime import datetime

import pytest

from core.errors import MalformedPayload
from models.models import SubscriptionStatus
from schemas.event_schema import (
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreatedOrUpdated,
    SubscriptionDeleted,
    TrialWillEnd,
    Unhandled,
)
from services.event_decoder import decode_event, decode_invoice, decode_subscription
from tests.factories import (
    PERIOD_END,
    checkout_object,
    event,
    invoice_object,
    subscription_object,
)


@pytest.mark.parametrize(
    "event_type, obj, variant",
    [
        ("checkout.session.completed", checkout_object(), CheckoutCompleted),
        ("customer.subscription.created", subscription_object(), SubscriptionCreatedOrUpdated),
        ("customer.subscription.updated", subscription_object(), SubscriptionCreatedOrUpdated),
        ("customer.subscription.deleted", subscription_object(), SubscriptionDeleted),
        ("invoice.paid", invoice_object(), InvoicePaid),
        ("invoice.payment_failed", invoice_object(), InvoicePaymentFailed),
        ("customer.subscription.trial_will_end", subscription_object(), TrialWillEnd),
    ],
)
def test_known_types_decode_to_their_variant(event_type, obj, variant):
    decoded = decode_event(event(event_type, obj))
    assert isinstance(decoded, variant)
    assert decoded.event_type == event_type
    assert decoded.event_id == "evt_1"


def test_unknown_type_is_unhandled_not_an_error():
    decoded = decode_event(event("customer.created", {"id": "cus_1"}))
    assert isinstance(decoded, Unhandled)
    assert decoded.event_type == "customer.created"


def test_unknown_type_without_object_is_still_unhandled():
    decoded = decode_event({"id": "evt_2", "type": "payout.paid"})
    assert isinstance(decoded, Unhandled)


def test_known_type_without_data_object_is_malformed():
    with pytest.raises(MalformedPayload):
        decode_event({"id": "evt_1", "type": "invoice.paid", "data": {}})


def test_subscription_fields_and_timestamps():
    state = decode_subscription(subscription_object(status="past_due", cancel_at_period_end=True))

    assert state.subscription_id == "sub_1"
    assert state.customer_id == "cus_1"
    assert state.price_id == "price_pro"
    assert state.status == SubscriptionStatus.PAST_DUE
    assert state.cancel_at_period_end is True
    assert state.user_id == "user_1"
    assert state.period_end == datetime.utcfromtimestamp(PERIOD_END)


def test_expanded_customer_and_item_level_periods():
    obj = subscription_object()
    obj["customer"] = {"id": "cus_expanded", "object": "customer"}
    del obj["current_period_start"]
    del obj["current_period_end"]
    obj["items"]["data"][0]["current_period_start"] = 1_700_000_000
    obj["items"]["data"][0]["current_period_end"] = PERIOD_END

    state = decode_subscription(obj)
    assert state.customer_id == "cus_expanded"
    assert state.period_end == datetime.utcfromtimestamp(PERIOD_END)


def test_subscription_without_customer_is_malformed():
    obj = subscription_object()
    obj["customer"] = None
    with pytest.raises(MalformedPayload):
        decode_subscription(obj)


def test_subscription_with_unknown_status_is_malformed():
    with pytest.raises(MalformedPayload):
        decode_subscription(subscription_object(status="exploded"))


def test_bad_timestamp_is_malformed():
    obj = subscription_object()
    obj["current_period_end"] = "tomorrow"
    with pytest.raises(MalformedPayload):
        decode_subscription(obj)


def test_checkout_email_from_customer_details():
    decoded = decode_event(event("checkout.session.completed", checkout_object(email="a@b.co")))
    assert decoded.session.customer_email == "a@b.co"
    assert decoded.session.user_id == "user_1"
    assert decoded.session.is_credit_purchase is False


def test_invoice_subscription_from_parent_details():
    obj = invoice_object()
    obj["subscription"] = None
    obj["parent"] = {"subscription_details": {"subscription": "sub_parent"}}

    invoice = decode_invoice(obj)
    assert invoice.subscription_id == "sub_parent"
    assert invoice.invoice_url == "https://invoice.stripe.com/in_1"
    assert invoice.amount_paid == 2900
    assert invoice.paid_at is not None
