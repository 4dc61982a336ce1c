"""Stripe-shaped payloads and signed webhook requests for tests."""

import hashlib
import hmac
import json
import time

WEBHOOK_SECRET = "whsec_test_secret"

PERIOD_START = 1_700_000_000
PERIOD_END = PERIOD_START + 30 * 24 * 3600


def subscription_object(
    sub_id="sub_1",
    customer="cus_1",
    price="price_pro",
    status="active",
    user_id="user_1",
    cancel_at_period_end=False,
    trial_end=None,
):
    metadata = {"userId": user_id} if user_id else {}
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "trial_start": None,
        "trial_end": trial_end,
        "metadata": metadata,
        "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": price, "object": "price"}}]},
    }


def checkout_object(
    session_id="cs_1",
    customer="cus_1",
    subscription="sub_1",
    user_id="user_1",
    mode="subscription",
    email="user@example.com",
    metadata=None,
):
    meta = {"userId": user_id} if user_id else {}
    meta.update(metadata or {})
    return {
        "id": session_id,
        "object": "checkout.session",
        "mode": mode,
        "customer": customer,
        "subscription": subscription,
        "customer_details": {"email": email},
        "metadata": meta,
    }


def credit_checkout_object(session_id="cs_credit_1", user_id="user_1", credits="150", package=None):
    metadata = {"type": "credit_purchase"}
    if credits is not None:
        metadata["credits"] = credits
    if package:
        metadata["creditPackageId"] = package
    return checkout_object(
        session_id=session_id,
        customer=None,
        subscription=None,
        user_id=user_id,
        mode="payment",
        metadata=metadata,
    )


def invoice_object(invoice_id="in_1", customer="cus_1", subscription="sub_1", amount_paid=2900):
    return {
        "id": invoice_id,
        "object": "invoice",
        "customer": customer,
        "subscription": subscription,
        "amount_paid": amount_paid,
        "currency": "usd",
        "status": "paid",
        "billing_reason": "subscription_cycle",
        "hosted_invoice_url": f"https://invoice.stripe.com/{invoice_id}",
        "invoice_pdf": f"https://pay.stripe.com/{invoice_id}.pdf",
        "period_start": PERIOD_START,
        "period_end": PERIOD_END,
        "status_transitions": {"paid_at": PERIOD_START + 60},
    }


def event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    t = int(timestamp if timestamp is not None else time.time())
    signature = hmac.new(secret.encode(), f"{t}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={t},v1={signature}"


def signed_request(envelope, secret: str = WEBHOOK_SECRET):
    """(body, headers) for posting ``envelope`` to the webhook."""
    body = json.dumps(envelope)
    return body, {"stripe-signature": sign(body, secret), "content-type": "application/json"}
