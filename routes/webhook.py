import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.concurrency import run_in_threadpool

from core.dependencies import get_dispatcher, get_processor
from core.errors import BillingError, log_error
from services.processor_client import StripeProcessor
from services.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    processor: StripeProcessor = Depends(get_processor),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Handle Stripe webhook events for subscriptions, credits and invoices"""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    # Verification and dispatch do blocking DB and Stripe I/O; keep them off the event loop
    try:
        event = await run_in_threadpool(processor.verify_event, payload, sig_header)
    except BillingError as e:
        log_error(e, operation="webhook.verify")
        return JSONResponse(status_code=e.status_code, content={"error": e.public_message})

    logger.info(f"✅ Webhook received: {event.get('type')}")
    status_code, content = await run_in_threadpool(dispatcher.dispatch, event)
    return JSONResponse(status_code=status_code, content=content)
