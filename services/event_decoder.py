# ================================================================
# services/event_decoder.py: Stripe event envelope → typed variant
# ================================================================
"""
Maps a verified Stripe event envelope onto the closed set of variants in
``schemas.event_schema``.

Unknown event types decode to ``Unhandled``. A known type whose payload is
structurally broken raises ``MalformedPayload``: that is contract drift and
should surface as a 5xx so Stripe retries and someone notices.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from core.errors import MalformedPayload
from schemas.event_schema import (
    BillingEvent,
    CheckoutCompleted,
    CheckoutSessionData,
    InvoiceData,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreatedOrUpdated,
    SubscriptionDeleted,
    SubscriptionState,
    TrialWillEnd,
    Unhandled,
)

logger = logging.getLogger(__name__)


# -------------------------
# Helpers
# -------------------------
def to_plain(obj: Any) -> Any:
    """Recursively turn StripeObjects (or any mapping) into plain dicts and lists."""
    if isinstance(obj, Mapping) or hasattr(obj, "keys"):
        return {key: to_plain(obj[key]) for key in obj.keys()}
    if isinstance(obj, (list, tuple)):
        return [to_plain(item) for item in obj]
    return obj


def _object_id(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object with an id."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        inner = value.get("id")
        return inner if isinstance(inner, str) and inner else None
    raise MalformedPayload(f"Expected an id or object, got {type(value).__name__}")


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedPayload(f"Expected a Unix timestamp, got {value!r}")
    # Stored naive in UTC, matching the rest of the models
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _first_item(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    items = obj.get("items")
    if not isinstance(items, Mapping):
        return {}
    data = items.get("data")
    if isinstance(data, list) and data and isinstance(data[0], Mapping):
        return data[0]
    return {}


def _metadata(obj: Mapping[str, Any]) -> Dict[str, str]:
    raw = obj.get("metadata") or {}
    if not isinstance(raw, Mapping):
        raise MalformedPayload("metadata must be an object")
    return {str(k): str(v) for k, v in raw.items() if v is not None}


def _require_str(obj: Mapping[str, Any], key: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedPayload(f"Missing required field '{key}'")
    return value


# -------------------------
# Object decoders
# -------------------------
def decode_subscription(obj: Any) -> SubscriptionState:
    """Decode a Stripe Subscription object (from an event or a retrieve call)."""
    obj = to_plain(obj)
    if not isinstance(obj, Mapping):
        raise MalformedPayload("Subscription payload is not an object")

    item = _first_item(obj)
    price = item.get("price")
    customer_id = _object_id(obj.get("customer"))
    if not customer_id:
        raise MalformedPayload("Subscription has no customer")

    # Newer API versions moved the period onto the subscription item
    period_start = obj.get("current_period_start", item.get("current_period_start"))
    period_end = obj.get("current_period_end", item.get("current_period_end"))

    try:
        return SubscriptionState(
            subscription_id=_require_str(obj, "id"),
            customer_id=customer_id,
            price_id=_object_id(price),
            status=obj.get("status"),
            period_start=_timestamp(period_start),
            period_end=_timestamp(period_end),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end") or False),
            trial_start=_timestamp(obj.get("trial_start")),
            trial_end=_timestamp(obj.get("trial_end")),
            user_id=_metadata(obj).get("userId"),
        )
    except ValidationError as e:
        raise MalformedPayload(f"Invalid subscription object: {e}") from e


def decode_checkout_session(obj: Any) -> CheckoutSessionData:
    obj = to_plain(obj)
    if not isinstance(obj, Mapping):
        raise MalformedPayload("Checkout session payload is not an object")

    details = obj.get("customer_details") or {}
    email = obj.get("customer_email")
    if not email and isinstance(details, Mapping):
        email = details.get("email")

    try:
        return CheckoutSessionData(
            session_id=_require_str(obj, "id"),
            mode=obj.get("mode"),
            customer_id=_object_id(obj.get("customer")),
            subscription_id=_object_id(obj.get("subscription")),
            customer_email=email or None,
            metadata=_metadata(obj),
        )
    except ValidationError as e:
        raise MalformedPayload(f"Invalid checkout session: {e}") from e


def decode_invoice(obj: Any) -> InvoiceData:
    obj = to_plain(obj)
    if not isinstance(obj, Mapping):
        raise MalformedPayload("Invoice payload is not an object")

    customer_id = _object_id(obj.get("customer"))
    if not customer_id:
        raise MalformedPayload("Invoice has no customer")

    subscription_id = _object_id(obj.get("subscription"))
    if subscription_id is None:
        parent = obj.get("parent") or {}
        details = parent.get("subscription_details") if isinstance(parent, Mapping) else None
        if isinstance(details, Mapping):
            subscription_id = _object_id(details.get("subscription"))

    transitions = obj.get("status_transitions") or {}
    paid_at = transitions.get("paid_at") if isinstance(transitions, Mapping) else None

    try:
        return InvoiceData(
            invoice_id=_require_str(obj, "id"),
            customer_id=customer_id,
            subscription_id=subscription_id,
            amount_paid=obj.get("amount_paid") or 0,
            currency=obj.get("currency") or "usd",
            status=obj.get("status") or "paid",
            billing_reason=obj.get("billing_reason"),
            invoice_pdf=obj.get("invoice_pdf"),
            invoice_url=obj.get("hosted_invoice_url"),
            period_start=_timestamp(obj.get("period_start")),
            period_end=_timestamp(obj.get("period_end")),
            paid_at=_timestamp(paid_at),
        )
    except ValidationError as e:
        raise MalformedPayload(f"Invalid invoice object: {e}") from e


# -------------------------
# Envelope decoder
# -------------------------
def _checkout(event_id, event_type, obj):
    return CheckoutCompleted(event_id=event_id, event_type=event_type, session=decode_checkout_session(obj))


def _subscription_changed(event_id, event_type, obj):
    return SubscriptionCreatedOrUpdated(event_id=event_id, event_type=event_type, subscription=decode_subscription(obj))


def _subscription_deleted(event_id, event_type, obj):
    return SubscriptionDeleted(event_id=event_id, event_type=event_type, subscription=decode_subscription(obj))


def _invoice_paid(event_id, event_type, obj):
    return InvoicePaid(event_id=event_id, event_type=event_type, invoice=decode_invoice(obj))


def _invoice_failed(event_id, event_type, obj):
    return InvoicePaymentFailed(event_id=event_id, event_type=event_type, invoice=decode_invoice(obj))


def _trial_will_end(event_id, event_type, obj):
    return TrialWillEnd(event_id=event_id, event_type=event_type, subscription=decode_subscription(obj))


EVENT_DECODERS: Dict[str, Callable[[Optional[str], str, Any], BillingEvent]] = {
    "checkout.session.completed": _checkout,
    "customer.subscription.created": _subscription_changed,
    "customer.subscription.updated": _subscription_changed,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.paid": _invoice_paid,
    "invoice.payment_failed": _invoice_failed,
    "customer.subscription.trial_will_end": _trial_will_end,
}


def decode_event(envelope: Any) -> BillingEvent:
    """Decode a verified event envelope into its typed variant."""
    envelope = to_plain(envelope)
    if not isinstance(envelope, Mapping):
        raise MalformedPayload("Event envelope is not an object")

    event_type = envelope.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedPayload("Event envelope has no type")
    event_id = envelope.get("id") if isinstance(envelope.get("id"), str) else None

    decoder = EVENT_DECODERS.get(event_type)
    if decoder is None:
        logger.info(f"ℹ️ Unhandled event type: {event_type}")
        return Unhandled(event_id=event_id, event_type=event_type)

    data = envelope.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    if not isinstance(obj, Mapping):
        raise MalformedPayload(f"{event_type} event has no data.object", event_id=event_id)

    return decoder(event_id, event_type, obj)
