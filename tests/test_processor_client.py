import json
import time

import pytest
import stripe

from core.errors import ErrorSeverity, MalformedPayload, SignatureInvalid, UpstreamLookupFailed, WebhookNotConfigured
from services.processor_client import StripeProcessor
from tests.factories import event, sign, subscription_object


def test_valid_signature_returns_envelope(processor):
    body = json.dumps(event("invoice.paid", {"id": "in_1"}))
    envelope = processor.verify_event(body.encode(), sign(body))
    assert envelope["type"] == "invoice.paid"


def test_missing_signature_header(processor):
    with pytest.raises(SignatureInvalid):
        processor.verify_event(b'{"id": "evt_1"}', None)


def test_wrong_secret_is_rejected(processor):
    body = json.dumps(event("invoice.paid", {"id": "in_1"}))
    with pytest.raises(SignatureInvalid):
        processor.verify_event(body.encode(), sign(body, secret="whsec_other"))


def test_tampered_body_is_rejected(processor):
    body = json.dumps(event("invoice.paid", {"id": "in_1"}))
    header = sign(body)
    with pytest.raises(SignatureInvalid):
        processor.verify_event(body.replace("in_1", "in_2").encode(), header)


def test_stale_timestamp_is_rejected(processor):
    body = json.dumps(event("invoice.paid", {"id": "in_1"}))
    with pytest.raises(SignatureInvalid):
        processor.verify_event(body.encode(), sign(body, timestamp=time.time() - 3600))


def test_signed_garbage_is_malformed_not_unsigned(processor):
    body = "not json"
    with pytest.raises(MalformedPayload):
        processor.verify_event(body.encode(), sign(body))


def test_missing_webhook_secret_is_critical():
    processor = StripeProcessor(api_key="sk_test_123", webhook_secret=None, client=object())
    with pytest.raises(WebhookNotConfigured) as exc:
        processor.verify_event(b"{}", "t=1,v1=abc")
    assert exc.value.severity == ErrorSeverity.CRITICAL


def test_retrieve_subscription_decodes(processor):
    processor._client.subscriptions.retrieve.return_value = subscription_object(price="price_agency")
    state = processor.retrieve_subscription("sub_1")
    assert state.price_id == "price_agency"
    processor._client.subscriptions.retrieve.assert_called_once_with("sub_1")


def test_invalid_request_is_not_retryable(processor):
    processor._client.subscriptions.retrieve.side_effect = stripe.InvalidRequestError("No such subscription", "id")
    with pytest.raises(UpstreamLookupFailed) as exc:
        processor.retrieve_subscription("sub_missing")
    assert exc.value.retryable is False


def test_connection_error_is_retryable(processor):
    processor._client.subscriptions.retrieve.side_effect = stripe.APIConnectionError("timed out")
    with pytest.raises(UpstreamLookupFailed) as exc:
        processor.retrieve_subscription("sub_1")
    assert exc.value.retryable is True
    assert exc.value.status_code == 500


def test_authentication_error_is_critical(processor):
    processor._client.checkout.sessions.retrieve.side_effect = stripe.AuthenticationError("bad key")
    with pytest.raises(UpstreamLookupFailed) as exc:
        processor.retrieve_checkout_session("cs_1")
    assert exc.value.severity == ErrorSeverity.CRITICAL
