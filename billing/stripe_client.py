# billing/stripe_client.py
"""
Stripe SDK configuration.

Settings are read once at startup into a StripeSettings object that is
handed to BillingService. Nothing here mutates the global ``stripe``
module; every SDK call passes its own request options instead.

Environment variables:
- STRIPE_SECRET_KEY: Stripe API secret key (required for billing)
- STRIPE_WEBHOOK_SECRET: Webhook signing secret (required for webhooks)
- STRIPE_API_VERSION: Pinned API version (default: 2023-10-16)
- STRIPE_TEST_MODE: "true" for test mode (default: true)
- STRIPE_TRIAL_DAYS: Free trial length for first subscriptions (default: 7)
- FRONTEND_URL: Base URL for portal/checkout redirects
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import stripe

_logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2023-10-16"
DEFAULT_TRIAL_DAYS = 7
DEFAULT_FRONTEND_URL = "http://localhost:3000"


@dataclass(frozen=True)
class StripeSettings:
    """Process-wide Stripe configuration."""
    secret_key: str = ""
    webhook_secret: str = ""
    api_version: str = DEFAULT_API_VERSION
    test_mode: bool = True
    trial_days: int = DEFAULT_TRIAL_DAYS
    frontend_url: str = DEFAULT_FRONTEND_URL

    @property
    def billing_enabled(self) -> bool:
        """Billing needs a plausible secret key."""
        return bool(self.secret_key and len(self.secret_key) > 10)

    @property
    def webhooks_enabled(self) -> bool:
        return bool(self.webhook_secret)

    @property
    def mode(self) -> str:
        return "test" if self.test_mode else "live"

    def request_options(self) -> dict:
        """Per-call options for stripe resource methods."""
        return {
            "api_key": self.secret_key,
            "stripe_version": self.api_version,
        }


def _trial_days_from_env() -> int:
    raw = os.environ.get("STRIPE_TRIAL_DAYS")
    if raw is None:
        return DEFAULT_TRIAL_DAYS
    try:
        value = int(raw)
    except ValueError:
        _logger.warning(f"STRIPE_TRIAL_DAYS='{raw}' is not an integer; using {DEFAULT_TRIAL_DAYS}")
        return DEFAULT_TRIAL_DAYS
    if value < 0:
        _logger.warning(f"STRIPE_TRIAL_DAYS={value} is negative; using {DEFAULT_TRIAL_DAYS}")
        return DEFAULT_TRIAL_DAYS
    return value


def load_stripe_settings() -> StripeSettings:
    """Build StripeSettings from the environment."""
    settings = StripeSettings(
        secret_key=os.environ.get("STRIPE_SECRET_KEY", ""),
        webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET", ""),
        api_version=os.environ.get("STRIPE_API_VERSION", DEFAULT_API_VERSION),
        test_mode=os.environ.get("STRIPE_TEST_MODE", "true").lower() == "true",
        trial_days=_trial_days_from_env(),
        frontend_url=os.environ.get("FRONTEND_URL", DEFAULT_FRONTEND_URL).rstrip("/"),
    )

    if not settings.billing_enabled:
        _logger.warning("STRIPE_SECRET_KEY not set. Billing disabled.")
    else:
        _logger.info(f"Stripe configured in {settings.mode} mode")

    if not settings.webhooks_enabled:
        _logger.warning("STRIPE_WEBHOOK_SECRET not set. Webhooks will be rejected.")

    return settings


def get_stripe():
    """The stripe SDK module. BillingService takes it as a parameter so tests can swap it."""
    return stripe
