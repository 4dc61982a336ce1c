import logging

import pytest
import stripe
from sqlalchemy.exc import OperationalError

from core.errors import (
    EmailDeliveryFailed,
    ErrorSeverity,
    MissingLocalSubscription,
    SignatureInvalid,
    UpstreamLookupFailed,
    classify_severity,
    log_error,
)


@pytest.mark.parametrize(
    "error, severity",
    [
        (stripe.AuthenticationError("bad key"), ErrorSeverity.CRITICAL),
        (stripe.APIConnectionError("down"), ErrorSeverity.HIGH),
        (OperationalError("SELECT 1", {}, Exception("gone")), ErrorSeverity.HIGH),
        (EmailDeliveryFailed("rejected"), ErrorSeverity.MEDIUM),
        (ValueError("service role key leaked"), ErrorSeverity.CRITICAL),
        (ValueError("nothing special"), ErrorSeverity.LOW),
        (SignatureInvalid("bad"), ErrorSeverity.HIGH),
        (MissingLocalSubscription("gone"), ErrorSeverity.LOW),
    ],
)
def test_classify_severity(error, severity):
    assert classify_severity(error) == severity


def test_severity_override():
    error = UpstreamLookupFailed("bad key", severity=ErrorSeverity.CRITICAL)
    assert error.severity == ErrorSeverity.CRITICAL
    assert error.retryable is True


def test_log_error_level_follows_severity(caplog):
    with caplog.at_level(logging.INFO, logger="billing.errors"):
        log_error(MissingLocalSubscription("no row", customer_id="cus_1"), operation="webhook")
        log_error(stripe.AuthenticationError("bad key"), operation="lookup")
        log_error(EmailDeliveryFailed("rejected"), operation="email")
        log_error(ValueError("odd"), operation="misc")

    levels = [record.levelno for record in caplog.records]
    assert levels == [logging.ERROR, logging.CRITICAL, logging.WARNING, logging.INFO]
    assert "cus_1" in caplog.records[0].getMessage()
