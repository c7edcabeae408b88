# billing/webhooks.py
"""
Stripe webhook verification and dispatch.

Security:
- Every delivery is verified with the Stripe signing secret
- Unverified payloads never reach a handler

Dispatch is fire-and-forget: handlers are queued on the request's
BackgroundTasks and the delivery is acknowledged without waiting for
them. Repeated deliveries of an event id are acknowledged but not
queued again, unless the earlier handler failed.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import stripe

_logger = logging.getLogger(__name__)

SIGNATURE_FAILED_MESSAGE = "Webhook signature verification failed."

# Event type -> BillingService method name
EVENT_HANDLERS = {
    "invoice.payment_succeeded": "handle_payment_succeeded",
    "invoice.payment_failed": "handle_payment_failed",
}


class WebhookError(Exception):
    """Webhook processing error."""
    pass


class SignatureVerificationError(WebhookError):
    """Webhook signature verification failed."""
    pass


def verify_webhook_signature(
    payload: bytes,
    signature: Optional[str],
    webhook_secret: str,
    sdk=stripe,
):
    """
    Verify a Stripe webhook signature and parse the event.

    Args:
        payload: Raw request body bytes
        signature: Stripe-Signature header value
        webhook_secret: Endpoint signing secret
        sdk: stripe module (or stand-in) providing Webhook.construct_event

    Returns:
        Verified Stripe event

    Raises:
        SignatureVerificationError: Missing secret or header, bad
            signature, or unparseable payload
    """
    if not webhook_secret:
        _logger.error("STRIPE_WEBHOOK_SECRET is not set; rejecting webhook")
        raise SignatureVerificationError("Webhook secret not configured")

    if not signature:
        _logger.warning("Webhook delivery without Stripe-Signature header")
        raise SignatureVerificationError("Missing signature header")

    try:
        return sdk.Webhook.construct_event(payload, signature, webhook_secret)

    except stripe.SignatureVerificationError as e:
        _logger.warning(f"Webhook signature verification failed: {e}")
        raise SignatureVerificationError("Invalid webhook signature")

    except ValueError as e:
        _logger.warning(f"Invalid webhook payload: {e}")
        raise SignatureVerificationError("Invalid webhook payload")


def run_event_handler(service, event) -> bool:
    """
    Run the handler for one queued event.

    Runs after the response is sent, so a failure is logged and the
    event id is forgotten; Stripe's next delivery of the event is then
    dispatched again instead of being skipped as a duplicate.

    Returns:
        True if the handler completed
    """
    event_type = event.get("type", "unknown")
    handler = getattr(service, EVENT_HANDLERS[event_type])
    data_object = (event.get("data") or {}).get("object") or {}

    try:
        handler(data_object)
    except Exception:
        _logger.exception(f"Webhook handler failed for {event_type}", extra={"event_id": event.get("id")})
        service.forget_event(event)
        return False
    return True


def dispatch_webhook_event(event, service, schedule: Callable) -> Optional[str]:
    """
    Queue the handler for a verified event.

    Args:
        event: Verified Stripe event
        service: BillingService whose handler methods receive data.object
        schedule: Queues a call, e.g. BackgroundTasks.add_task

    Returns:
        The event type if a handler was queued, else None
    """
    event_type = event.get("type", "unknown")

    if event_type not in EVENT_HANDLERS:
        _logger.info(f"Unhandled event type {event_type}")
        return None

    if not service.record_event(event):
        _logger.info(f"Duplicate delivery of event {event.get('id')} ignored")
        return None

    schedule(run_event_handler, service, event)

    _logger.info(f"Queued handler for {event_type}", extra={"event_id": event.get("id")})
    return event_type
