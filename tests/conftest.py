"""
Pytest configuration for the billing service tests.
Environment must be set before any project module reads settings.
"""

import os

os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "development"
os.environ["STRIPE_STARTER_PRICE_ID"] = "price_starter"
os.environ["STRIPE_PROFESSIONAL_PRICE_ID"] = "price_pro"
os.environ["STRIPE_AGENCY_PRICE_ID"] = "price_agency"
os.environ.pop("CRON_SECRET", None)
os.environ.pop("SENDGRID_API_KEY", None)

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session

from core.config import settings
from core.database import build_engine, get_session
from services.catalog import TierCatalog
from services.credit_ledger import CreditLedger
from services.entitlements import EntitlementGate
from services.processor_client import StripeProcessor
from services.reconciler import SubscriptionReconciler
from services.store import SubscriptionStore
from services.webhook_dispatcher import WebhookDispatcher

import models.models  # noqa: F401
from tests.factories import WEBHOOK_SECRET


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def store(session):
    return SubscriptionStore(session)


@pytest.fixture
def catalog():
    return TierCatalog.from_settings(settings)


@pytest.fixture
def processor():
    """Stripe processor with a mocked SDK client; tests set what the lookups return."""
    return StripeProcessor(api_key="sk_test_123", webhook_secret=WEBHOOK_SECRET, client=MagicMock())


@pytest.fixture
def email_service():
    return MagicMock()


@pytest.fixture
def reconciler(store, processor, catalog, email_service):
    return SubscriptionReconciler(store, processor, catalog, email_service=email_service)


@pytest.fixture
def ledger(store, catalog):
    return CreditLedger(store, catalog)


@pytest.fixture
def gate(store, reconciler):
    return EntitlementGate(store, reconciler)


@pytest.fixture
def dispatcher(store, reconciler):
    return WebhookDispatcher(store, reconciler)


@pytest.fixture
def client(engine, processor, email_service):
    from main import app

    def _session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _session_override
    with TestClient(app) as test_client:
        app.state.processor = processor
        app.state.email_service = email_service
        yield test_client
    app.dependency_overrides.clear()
