# core/errors.py
"""
Error taxonomy for the billing webhook path.

Each error carries the HTTP status the processor should see and a severity
tier. Severity decides the log level; the response body only ever carries
``public_message``.
"""
import logging
from enum import Enum
from typing import Any, Optional

import stripe
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("billing.errors")


class ErrorSeverity(str, Enum):
    CRITICAL = "critical"  # anything touching elevated credentials
    HIGH = "high"          # auth / connection failures
    MEDIUM = "medium"      # quota or delivery issues
    LOW = "low"


class BillingError(Exception):
    status_code: int = 500
    severity: ErrorSeverity = ErrorSeverity.LOW
    public_message: str = "Webhook handler failed"
    # Overrides the severity-derived log level when set
    log_level: Optional[int] = None

    def __init__(self, message: str, severity: Optional[ErrorSeverity] = None, **context: Any):
        super().__init__(message)
        if severity is not None:
            self.severity = severity
        self.context = context


class SignatureInvalid(BillingError):
    status_code = 400
    severity = ErrorSeverity.HIGH
    public_message = "Invalid signature"


class WebhookNotConfigured(BillingError):
    status_code = 500
    severity = ErrorSeverity.CRITICAL
    public_message = "Webhook secret not configured"


class UpstreamLookupFailed(BillingError):
    status_code = 500
    severity = ErrorSeverity.HIGH
    public_message = "Upstream lookup failed"

    def __init__(self, message: str, retryable: bool = True, **kwargs: Any):
        super().__init__(message, **kwargs)
        # False when Stripe rejected the request itself (e.g. unknown id); retrying will not help
        self.retryable = retryable


class PersistenceFailed(BillingError):
    status_code = 500
    severity = ErrorSeverity.HIGH
    public_message = "Database operation failed"


class MalformedPayload(BillingError):
    status_code = 500
    severity = ErrorSeverity.LOW
    public_message = "Malformed event payload"
    log_level = logging.ERROR


class MissingLocalSubscription(BillingError):
    """No local row and nothing in the event to build one from. Retrying will not help."""

    status_code = 200
    severity = ErrorSeverity.LOW
    public_message = "No local subscription"
    log_level = logging.ERROR


class EmailDeliveryFailed(Exception):
    """Raised by the email service when SendGrid rejects a message."""


def classify_severity(error: BaseException) -> ErrorSeverity:
    """Severity tier for any exception, including ones raised by libraries."""
    if isinstance(error, BillingError):
        return error.severity
    if isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
        return ErrorSeverity.CRITICAL
    if isinstance(error, (stripe.APIConnectionError, SQLAlchemyError, ConnectionError, TimeoutError)):
        return ErrorSeverity.HIGH
    if isinstance(error, (EmailDeliveryFailed, stripe.RateLimitError)):
        return ErrorSeverity.MEDIUM

    message = str(error).lower()
    if "service role" in message or "secret key" in message:
        return ErrorSeverity.CRITICAL
    if "authentication" in message or "authorization" in message or "connection" in message:
        return ErrorSeverity.HIGH
    return ErrorSeverity.LOW


_LEVELS = {
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


def log_error(error: BaseException, operation: Optional[str] = None, **context: Any) -> ErrorSeverity:
    """Log an error at the level its severity calls for and return the severity."""
    severity = classify_severity(error)
    details = dict(getattr(error, "context", {}) or {})
    details.update(context)
    level = getattr(error, "log_level", None) or _LEVELS[severity]
    logger.log(
        level,
        "[%s] %s: %s | operation=%s context=%s",
        severity.value.upper(),
        type(error).__name__,
        error,
        operation,
        details,
        exc_info=severity in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH),
    )
    return severity
