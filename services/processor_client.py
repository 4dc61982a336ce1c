# ================================================================
# services/processor_client.py: Stripe client (verify + read-only lookups)
# ================================================================
import json
import logging
from typing import Any, Dict, Optional

import stripe

from core.errors import (
    ErrorSeverity,
    MalformedPayload,
    SignatureInvalid,
    UpstreamLookupFailed,
    WebhookNotConfigured,
)
from schemas.event_schema import CheckoutSessionData, SubscriptionState
from services.event_decoder import decode_checkout_session, decode_subscription

logger = logging.getLogger(__name__)

# Event types that should never reach a billing webhook endpoint
SUSPICIOUS_EVENT_TYPES = {"account.updated", "capability.updated", "person.updated"}


class StripeProcessor:
    """
    The one place that talks to Stripe.

    Built once at startup and injected; holds the secret key and webhook
    secret so nothing else in the app needs them. Every outbound call is
    bounded by ``timeout_seconds`` and never retried here: a failed lookup
    fails the webhook and Stripe redelivers with backoff.
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: Optional[str],
        timeout_seconds: float = 10.0,
        tolerance_seconds: int = 300,
        client: Optional[stripe.StripeClient] = None,
    ):
        self._webhook_secret = webhook_secret
        self._tolerance = tolerance_seconds
        self._client = client or stripe.StripeClient(
            api_key,
            http_client=stripe.RequestsClient(timeout=timeout_seconds),
            max_network_retries=0,
        )

    @classmethod
    def from_settings(cls, settings) -> "StripeProcessor":
        return cls(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            timeout_seconds=settings.STRIPE_TIMEOUT_SECONDS,
            tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )

    # ------------------------
    # Signature verification
    # ------------------------
    def verify_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the Stripe-Signature header over the raw body, then parse it.
        Nothing is parsed until the signature checks out.
        """
        if not self._webhook_secret:
            raise WebhookNotConfigured("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature:
            raise SignatureInvalid("Missing stripe-signature header")
        if not payload:
            raise SignatureInvalid("Empty webhook payload")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SignatureInvalid("Webhook payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(body, signature, self._webhook_secret, self._tolerance)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(
                "Webhook signature verification failed",
                signature_prefix=signature[:20],
                payload_length=len(payload),
            ) from e

        try:
            envelope = json.loads(body)
        except ValueError as e:
            raise MalformedPayload("Signed webhook body is not valid JSON") from e
        if not isinstance(envelope, dict):
            raise MalformedPayload("Signed webhook body is not a JSON object")

        if envelope.get("type") in SUSPICIOUS_EVENT_TYPES:
            logger.warning(f"⚠️ Received potentially suspicious webhook event: {envelope.get('type')} ({envelope.get('id')})")

        return envelope

    # ------------------------
    # Read-only lookups
    # ------------------------
    def retrieve_subscription(self, subscription_id: str) -> SubscriptionState:
        try:
            subscription = self._client.subscriptions.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise self._lookup_error("subscription", subscription_id, e) from e
        return decode_subscription(subscription)

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionData:
        try:
            session = self._client.checkout.sessions.retrieve(session_id)
        except stripe.StripeError as e:
            raise self._lookup_error("checkout session", session_id, e) from e
        return decode_checkout_session(session)

    @staticmethod
    def _lookup_error(kind: str, object_id: str, error: stripe.StripeError) -> UpstreamLookupFailed:
        message = f"Failed to retrieve {kind} {object_id}: {error.user_message or error}"
        if isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
            return UpstreamLookupFailed(message, severity=ErrorSeverity.CRITICAL, object_id=object_id)
        if isinstance(error, stripe.InvalidRequestError):
            return UpstreamLookupFailed(message, retryable=False, object_id=object_id)
        return UpstreamLookupFailed(message, object_id=object_id)
