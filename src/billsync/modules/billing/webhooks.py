"""Stripe webhook handlers.

The signature is checked against the raw body before anything is parsed
or written. Once verified, any processing failure rolls back the session
and answers 500 so Stripe redelivers the event later; reconciliation is
idempotent, so redelivery is always safe.
"""

import asyncio
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from billsync.api.dependencies import DBSession
from billsync.config import settings
from billsync.core.errors import BadRequestError, ServiceUnavailableError
from billsync.core.jobs import enqueue

from .reconciler import SubscriptionReconciler
from .schemas import (
    PaymentOutcome,
    StripeEvent,
    SubscriptionEvent,
    WebhookAck,
    invoice_subscription_id,
)
from .stripe_client import StripeClient


logger = structlog.get_logger()

webhook_router = APIRouter()

SUBSCRIPTION_UPSERT_EVENTS = frozenset(
    {"customer.subscription.created", "customer.subscription.updated"}
)
SUBSCRIPTION_DELETED_EVENT = "customer.subscription.deleted"
PAYMENT_OUTCOME_EVENTS = {
    "invoice.payment_succeeded": PaymentOutcome.SUCCEEDED,
    "invoice.payment_failed": PaymentOutcome.FAILED,
}
CHECKOUT_COMPLETED_EVENT = "checkout.session.completed"


def event_subscription_id(event: StripeEvent) -> str | None:
    """The subscription an event concerns, if any."""
    obj = event.data.object
    if event.type.startswith("customer.subscription."):
        return obj.get("id")
    if event.type.startswith("invoice."):
        return invoice_subscription_id(obj)
    if event.type == CHECKOUT_COMPLETED_EVENT:
        subscription = obj.get("subscription")
        return subscription.get("id") if isinstance(subscription, dict) else subscription
    return None


async def dispatch_event(event: StripeEvent, reconciler: SubscriptionReconciler) -> None:
    """Route a verified event to the reconciler.

    Unknown event types are acknowledged without effect.
    """
    obj = event.data.object

    if event.type in SUBSCRIPTION_UPSERT_EVENTS:
        await reconciler.apply_subscription_upsert(
            SubscriptionEvent.from_stripe(obj, event_created_at=event.created_at)
        )

    elif event.type == SUBSCRIPTION_DELETED_EVENT:
        await reconciler.apply_subscription_cancellation(obj["id"])

    elif event.type in PAYMENT_OUTCOME_EVENTS:
        subscription_id = invoice_subscription_id(obj)
        if not subscription_id:
            logger.info("invoice_without_subscription", invoice_id=obj.get("id"))
            return
        await reconciler.apply_payment_outcome(
            subscription_id, PAYMENT_OUTCOME_EVENTS[event.type]
        )

    elif event.type == CHECKOUT_COMPLETED_EVENT:
        # The billing record is created by the subscription events
        logger.info(
            "checkout_completed",
            session_id=obj.get("id"),
            customer_id=obj.get("customer"),
            mode=obj.get("mode"),
        )

    else:
        logger.info("webhook_event_ignored")


async def notify_payment_failed(subscription_id: str) -> None:
    """Queue the payment failure email without failing the webhook."""
    try:
        await enqueue(
            "send_payment_failed_email",
            subscription_id=subscription_id,
            _job_id=f"payment-failed-{subscription_id}",
        )
    except Exception as e:
        logger.warning(
            "payment_failed_email_enqueue_failed",
            subscription_id=subscription_id,
            error=str(e),
        )


@webhook_router.post(
    "/webhooks",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Stripe webhook endpoint",
    description="Receives and processes Stripe webhook events.",
    include_in_schema=False,
)
async def stripe_webhook(
    request: Request,
    db: DBSession,
    reconciler: Annotated[SubscriptionReconciler, Depends()],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> Any:
    """Verify, then reconcile, a Stripe webhook event."""
    if not settings.stripe_webhook_secret:
        logger.error("webhook_secret_not_configured")
        raise ServiceUnavailableError(
            "Stripe webhook secret is not configured", retry_after=300
        )

    payload = await request.body()
    StripeClient.verify_webhook(
        payload, stripe_signature, settings.stripe_webhook_secret
    )

    try:
        event = StripeEvent.model_validate_json(payload)
    except ValidationError as e:
        raise BadRequestError(
            "Invalid webhook payload", error_code="invalid_payload"
        ) from e

    subscription_id = event_subscription_id(event)
    structlog.contextvars.bind_contextvars(
        event_id=event.id,
        event_type=event.type,
        subscription_id=subscription_id,
    )
    logger.info("webhook_received")

    try:
        await asyncio.wait_for(
            dispatch_event(event, reconciler),
            timeout=settings.webhook_processing_timeout_seconds,
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.exception(
            "webhook_processing_failed",
            event_id=event.id,
            event_type=event.type,
            subscription_id=subscription_id,
            error_type=type(e).__name__,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Webhook processing failed",
                "event_id": event.id,
                "event_type": event.type,
            },
        )

    if event.type == "invoice.payment_failed" and subscription_id:
        await notify_payment_failed(subscription_id)

    return WebhookAck()
