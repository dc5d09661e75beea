"""Billing notification tasks.

Emails are sent through the provider's HTTP API. Delivery errors are
raised so ARQ retries the job.
"""

from typing import Any

import httpx
import structlog

from billsync.config import settings
from billsync.modules.billing.models import ReferenceType, Subscription
from billsync.modules.identity.models import User
from billsync.modules.identity.repos import IdentityRepository


log = structlog.get_logger()

PAYMENT_FAILED_SUBJECT = "Your payment failed"


def payment_failed_body(subscription: Subscription) -> str:
    """Plain-text body of the payment failure email."""
    plan_name = subscription.plan.name if subscription.plan else subscription.plan_id
    return (
        f"We could not collect the latest payment for your {plan_name} plan.\n\n"
        "Your subscription stays available while Stripe retries the charge. "
        f"Update your payment method at {settings.app_url}/billing to avoid "
        "losing access.\n"
    )


async def send_email(
    client: httpx.AsyncClient, recipients: list[str], subject: str, text: str
) -> None:
    """Post one message to the email provider."""
    response = await client.post(
        settings.email_api_url or "",
        headers={"Authorization": f"Bearer {settings.email_api_key}"},
        json={
            "from": settings.email_from,
            "to": recipients,
            "subject": subject,
            "text": text,
        },
    )
    response.raise_for_status()


async def send_payment_failed_email(
    ctx: dict[str, Any], subscription_id: str
) -> dict[str, Any]:
    """Tell the owner of a subscription that a payment failed.

    Personal subscriptions notify the user; organization subscriptions
    notify the organization's owners.

    Args:
        ctx: Worker context containing database session factory and HTTP client
        subscription_id: Stripe subscription id of the billing record

    Returns:
        Dict with the number of recipients notified
    """
    if not settings.email_api_url:
        log.info(
            "payment_failed_email_skipped",
            subscription_id=subscription_id,
            reason="email_not_configured",
        )
        return {"sent": 0}

    session_factory = ctx["db_session_factory"]
    async with session_factory() as session:
        subscription = await session.get(Subscription, subscription_id)
        if subscription is None:
            log.warning("subscription_not_found", subscription_id=subscription_id)
            return {"sent": 0}

        if subscription.reference_type == ReferenceType.ORGANIZATION:
            recipients = await IdentityRepository(session).list_member_emails(
                subscription.reference_id
            )
        else:
            user = await session.get(User, subscription.reference_id)
            recipients = [user.email] if user else []

        text = payment_failed_body(subscription)

    if not recipients:
        log.warning(
            "payment_failed_email_no_recipients",
            subscription_id=subscription_id,
            reference_id=subscription.reference_id,
        )
        return {"sent": 0}

    await send_email(ctx["http_client"], recipients, PAYMENT_FAILED_SUBJECT, text)

    log.info(
        "payment_failed_email_sent",
        subscription_id=subscription_id,
        recipients=len(recipients),
    )
    return {"sent": len(recipients)}
