# billing/__init__.py
"""
Billing module for Stripe subscriptions.

Provides:
- BillingService, the facade the payment routes call
- Local customer records mirroring Stripe subscription state
- Webhook verification and fire-and-forget dispatch
"""

from billing.service import (
    BillingService,
    BillingError,
    BillingDisabledError,
    CustomerNotFoundError,
    CheckoutSessionNotFoundError,
    SubscriptionNotFoundError,
    TrialNotEligibleError,
)
from billing.stripe_client import StripeSettings, load_stripe_settings
from billing.webhooks import SignatureVerificationError, dispatch_webhook_event

__all__ = [
    "BillingService",
    "BillingError",
    "BillingDisabledError",
    "CustomerNotFoundError",
    "CheckoutSessionNotFoundError",
    "SubscriptionNotFoundError",
    "TrialNotEligibleError",
    "StripeSettings",
    "load_stripe_settings",
    "SignatureVerificationError",
    "dispatch_webhook_event",
]
