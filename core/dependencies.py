# core/dependencies.py
from fastapi import Depends, Request
from sqlmodel import Session

from core.database import get_session
from services.catalog import TierCatalog
from services.email_service import EmailService
from services.entitlements import EntitlementGate
from services.processor_client import StripeProcessor
from services.reconciler import SubscriptionReconciler
from services.store import SubscriptionStore
from services.webhook_dispatcher import WebhookDispatcher


# ========================================
# Shared clients (built once in the lifespan)
# ========================================
def get_processor(request: Request) -> StripeProcessor:
    return request.app.state.processor


def get_catalog(request: Request) -> TierCatalog:
    return request.app.state.catalog


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service


# ========================================
# Per-request services
# ========================================
def get_store(session: Session = Depends(get_session)) -> SubscriptionStore:
    return SubscriptionStore(session)


def get_reconciler(
    store: SubscriptionStore = Depends(get_store),
    processor: StripeProcessor = Depends(get_processor),
    catalog: TierCatalog = Depends(get_catalog),
    email_service: EmailService = Depends(get_email_service),
) -> SubscriptionReconciler:
    return SubscriptionReconciler(store, processor, catalog, email_service=email_service)


def get_dispatcher(
    store: SubscriptionStore = Depends(get_store),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> WebhookDispatcher:
    return WebhookDispatcher(store, reconciler)


def get_gate(
    store: SubscriptionStore = Depends(get_store),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> EntitlementGate:
    return EntitlementGate(store, reconciler)
