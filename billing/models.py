# billing/models.py
"""
Billing customer model.

A Customer links an internal user to a Stripe customer and carries the
locally mirrored state of its (at most one) current subscription and
its free-trial eligibility.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ActiveSubscription:
    """
    Mirror of the customer's current Stripe subscription.

    Attributes:
        subscription_id: Stripe subscription ID (None if never subscribed)
        status: Stripe status (active, trialing, past_due, canceled, ...)
        price_id: Stripe price the subscription is on
        subscription_expire: End of the current billing period. Once set it
            is never cleared, which is how "has subscribed before" is known.
        cancel_at_period_end: Whether the subscription stops at period end
    """
    subscription_id: Optional[str] = None
    status: Optional[str] = None
    price_id: Optional[str] = None
    subscription_expire: Optional[datetime] = None
    cancel_at_period_end: bool = False

    @property
    def exists(self) -> bool:
        return bool(self.subscription_id)

    def to_dict(self) -> dict:
        return {
            "subscriptionId": self.subscription_id,
            "status": self.status,
            "priceId": self.price_id,
            "subscriptionExpire": _iso(self.subscription_expire),
            "cancelAtPeriodEnd": self.cancel_at_period_end,
        }


@dataclass
class FreeTrial:
    """Free trial state: eligible while a trialing subscription can still be ended."""
    eligible: bool = False
    expires_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "eligible": self.eligible,
            "expiresAt": _iso(self.expires_at),
        }


@dataclass
class Customer:
    """
    Billing customer.

    Attributes:
        user_id: Internal user ID
        customer_stripe_id: Stripe customer ID, stable once created
        email: Email the Stripe customer was created with
        active_subscription: Current subscription mirror
        free_trial: Trial eligibility
    """
    user_id: str
    customer_stripe_id: str
    email: Optional[str] = None
    active_subscription: ActiveSubscription = field(default_factory=ActiveSubscription)
    free_trial: FreeTrial = field(default_factory=FreeTrial)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def trial_eligible_for_checkout(self) -> bool:
        """A first-time subscriber gets the free trial at checkout."""
        return self.active_subscription.subscription_expire is None

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "customerStripeId": self.customer_stripe_id,
            "email": self.email,
            "activeSubscription": self.active_subscription.to_dict(),
            "freeTrial": self.free_trial.to_dict(),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
