# billing/service.py
"""
Billing service for Stripe subscription management.

BillingService is built once at startup from StripeSettings and handed
to the route handlers. It wraps the Stripe calls and keeps the local
customer record (billing.customers) in step with Stripe:

- Customer lookup and creation
- Checkout and billing-portal sessions
- Price and subscription queries, cancel-at-period-end toggling
- Webhook event verification and invoice event handling
- Ending a free trial early
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import stripe

from auth.models import User
from billing import customers
from billing.models import Customer
from billing.products import summarize_prices
from billing.stripe_client import StripeSettings, get_stripe
from billing.webhooks import verify_webhook_signature

_logger = logging.getLogger(__name__)

# Stripe replaces this placeholder with the real session id on redirect
CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


class BillingError(Exception):
    """Base billing error."""
    pass


class BillingDisabledError(BillingError):
    """Billing is not enabled."""
    pass


class CustomerNotFoundError(BillingError):
    """User has no billing customer."""
    pass


class CheckoutSessionNotFoundError(BillingError):
    """Checkout session missing or owned by another customer."""
    pass


class SubscriptionNotFoundError(BillingError):
    """Subscription missing or owned by another customer."""
    pass


class TrialNotEligibleError(BillingError):
    """Customer has no free trial that can be ended."""
    pass


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Stripe unix timestamp to naive UTC datetime."""
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _iso_from_timestamp(value: Optional[int]) -> Optional[str]:
    dt = _from_timestamp(value)
    return dt.isoformat() if dt else None


def _object_id(value) -> Optional[str]:
    """Id of a Stripe reference that may be a bare id or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def _subscription_items(subscription) -> list:
    items = subscription.get("items") or {}
    return list(items.get("data") or [])


def _subscription_period_end(subscription) -> Optional[datetime]:
    # Newer API versions moved current_period_end onto the items
    period_end = subscription.get("current_period_end")
    if not period_end:
        items = _subscription_items(subscription)
        period_end = items[0].get("current_period_end") if items else None
    return _from_timestamp(period_end)


def _subscription_price_id(subscription) -> Optional[str]:
    items = _subscription_items(subscription)
    if not items:
        return None
    return _object_id(items[0].get("price"))


def _invoice_subscription_id(invoice) -> Optional[str]:
    subscription = invoice.get("subscription")
    if subscription:
        return _object_id(subscription)
    # Newer API versions nest it under parent.subscription_details
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _object_id(details.get("subscription"))


def subscription_to_dict(subscription) -> dict:
    period_end = _subscription_period_end(subscription)
    return {
        "id": subscription["id"],
        "status": subscription.get("status"),
        "customer": _object_id(subscription.get("customer")),
        "priceId": _subscription_price_id(subscription),
        "cancelAtPeriodEnd": bool(subscription.get("cancel_at_period_end")),
        "currentPeriodEnd": period_end.isoformat() if period_end else None,
        "trialEnd": _iso_from_timestamp(subscription.get("trial_end")),
    }


def checkout_session_to_dict(session) -> dict:
    return {
        "id": session["id"],
        "url": session.get("url"),
        "mode": session.get("mode"),
        "status": session.get("status"),
        "paymentStatus": session.get("payment_status"),
        "customer": _object_id(session.get("customer")),
        "subscription": _object_id(session.get("subscription")),
    }


class BillingService:
    """
    Facade over Stripe and the local customer store.

    Args:
        settings: Stripe configuration loaded at startup
        sdk: The stripe module, or a stand-in with the same surface
    """

    def __init__(self, settings: StripeSettings, sdk=None):
        self.settings = settings
        self.sdk = sdk if sdk is not None else get_stripe()

    @property
    def enabled(self) -> bool:
        return self.settings.billing_enabled

    def _require_enabled(self) -> None:
        if not self.enabled:
            raise BillingDisabledError("Billing is not enabled. Check STRIPE_SECRET_KEY.")

    def _options(self) -> dict:
        return self.settings.request_options()

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    def find_customer(self, user_id: str) -> Optional[Customer]:
        return customers.get_customer_by_user(user_id)

    def require_customer(self, user_id: str) -> Customer:
        """
        Raises:
            CustomerNotFoundError: User has no billing customer yet
        """
        customer = customers.get_customer_by_user(user_id)
        if not customer:
            raise CustomerNotFoundError("customer not found")
        return customer

    def get_or_create_customer(self, user: User) -> Customer:
        """
        Return the user's customer, creating the Stripe customer on first use.

        The idempotency key makes concurrent first calls for the same user
        resolve to one Stripe customer.
        """
        existing = customers.get_customer_by_user(user.id)
        if existing:
            return existing

        self._require_enabled()

        stripe_customer = self.sdk.Customer.create(
            email=user.email,
            metadata={"user_id": user.id},
            idempotency_key=f"customer-create-{user.id}",
            **self._options(),
        )

        try:
            customer = customers.create_customer(
                user_id=user.id,
                customer_stripe_id=stripe_customer["id"],
                email=user.email,
            )
        except customers.CustomerExistsError:
            customer = customers.get_customer_by_user(user.id)
            if customer is None:
                raise

        _logger.info(
            f"Created Stripe customer for user {user.id}",
            extra={"customer_id": customer.customer_stripe_id},
        )
        return customer

    def get_my_subscriptions(self, user_id: str) -> list[dict]:
        """Locally recorded subscription of the user, as a list of zero or one."""
        customer = customers.get_customer_by_user(user_id)
        if not customer or not customer.active_subscription.exists:
            return []
        return [customer.active_subscription.to_dict()]

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def create_portal_session(self, customer: Customer) -> dict:
        """Create a billing-portal session that returns to the account page."""
        self._require_enabled()

        session = self.sdk.billing_portal.Session.create(
            customer=customer.customer_stripe_id,
            return_url=f"{self.settings.frontend_url}/account",
            **self._options(),
        )
        return {"id": session["id"], "url": session["url"]}

    def create_checkout_session(
        self,
        customer: Customer,
        price_id: str,
        quantity: int = 1,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> dict:
        """
        Create a subscription Checkout session for a customer.

        First-time subscribers get the configured free trial.
        """
        self._require_enabled()

        trial_eligible = customer.trial_eligible_for_checkout
        frontend_url = self.settings.frontend_url

        subscription_data: dict = {"metadata": {"user_id": customer.user_id}}
        if trial_eligible and self.settings.trial_days > 0:
            subscription_data["trial_period_days"] = self.settings.trial_days

        session = self.sdk.checkout.Session.create(
            mode="subscription",
            customer=customer.customer_stripe_id,
            client_reference_id=customer.user_id,
            line_items=[{"price": price_id, "quantity": quantity}],
            success_url=success_url
            or f"{frontend_url}/checkout/success?session_id={CHECKOUT_SESSION_PLACEHOLDER}",
            cancel_url=cancel_url or f"{frontend_url}/pricing",
            metadata={"user_id": customer.user_id},
            subscription_data=subscription_data,
            **self._options(),
        )

        _logger.info(
            f"Created checkout session for user {customer.user_id}",
            extra={"session_id": session["id"], "price_id": price_id, "trial": trial_eligible},
        )
        return checkout_session_to_dict(session)

    def get_checkout_session(self, customer: Customer, session_id: str) -> dict:
        """
        Retrieve one of the customer's checkout sessions.

        A completed session is consumed on its first retrieval: its
        subscription is copied into the customer record. Later
        retrievals have no side effects.

        Raises:
            CheckoutSessionNotFoundError: Unknown id or another customer's session
        """
        self._require_enabled()

        try:
            session = self.sdk.checkout.Session.retrieve(
                session_id,
                expand=["subscription"],
                **self._options(),
            )
        except stripe.InvalidRequestError as e:
            _logger.warning(f"Checkout session lookup failed: {e}")
            raise CheckoutSessionNotFoundError("checkout session not found")

        if _object_id(session.get("customer")) != customer.customer_stripe_id:
            raise CheckoutSessionNotFoundError("checkout session not found")

        if session.get("status") == "complete":
            subscription = session.get("subscription")
            first_use = customers.consume_checkout_session(
                session_id=session["id"],
                customer_stripe_id=customer.customer_stripe_id,
                subscription_id=_object_id(subscription),
            )
            if first_use and subscription is not None and not isinstance(subscription, str):
                self._apply_subscription(customer.customer_stripe_id, subscription)

        return checkout_session_to_dict(session)

    # -------------------------------------------------------------------------
    # Prices and subscriptions
    # -------------------------------------------------------------------------

    def list_prices(self, active_product: bool = True) -> list[dict]:
        """Active recurring prices, optionally only those of active products."""
        self._require_enabled()

        prices = self.sdk.Price.list(
            active=True,
            type="recurring",
            expand=["data.product"],
            limit=100,
            **self._options(),
        )
        return [p.to_dict() for p in summarize_prices(prices.auto_paging_iter(), active_product)]

    def list_subscriptions(self, customer_stripe_id: str, status: str = "all") -> list[dict]:
        self._require_enabled()

        subscriptions = self.sdk.Subscription.list(
            customer=customer_stripe_id,
            status=status,
            limit=100,
            **self._options(),
        )
        return [subscription_to_dict(s) for s in subscriptions.auto_paging_iter()]

    def update_subscription_plan(
        self,
        customer: Customer,
        subscription_id: str,
        cancel_at_period_end: bool,
    ) -> dict:
        """
        Set or clear cancel-at-period-end on one of the customer's subscriptions.

        Raises:
            SubscriptionNotFoundError: Unknown id or another customer's subscription
        """
        self._require_enabled()

        try:
            current = self.sdk.Subscription.retrieve(subscription_id, **self._options())
        except stripe.InvalidRequestError as e:
            _logger.warning(f"Subscription lookup failed: {e}")
            raise SubscriptionNotFoundError("subscription not found")

        if _object_id(current.get("customer")) != customer.customer_stripe_id:
            raise SubscriptionNotFoundError("subscription not found")

        subscription = self.sdk.Subscription.modify(
            subscription_id,
            cancel_at_period_end=cancel_at_period_end,
            **self._options(),
        )

        if customer.active_subscription.subscription_id == subscription_id:
            customers.update_customer(
                customer.customer_stripe_id,
                subscription_status=subscription.get("status"),
                cancel_at_period_end=cancel_at_period_end,
            )

        _logger.info(
            f"Subscription {subscription_id} cancel_at_period_end={cancel_at_period_end}",
            extra={"customer_id": customer.customer_stripe_id},
        )
        return subscription_to_dict(subscription)

    def end_trial(self, customer: Customer) -> dict:
        """
        End the customer's free trial now.

        Raises:
            TrialNotEligibleError: No eligible trial or no subscription
        """
        subscription_id = customer.active_subscription.subscription_id
        if not (customer.free_trial.eligible and subscription_id):
            raise TrialNotEligibleError("trial canceling failed")

        self._require_enabled()

        subscription = self.sdk.Subscription.modify(
            subscription_id,
            trial_end="now",
            **self._options(),
        )

        customers.update_customer(
            customer.customer_stripe_id,
            subscription_status=subscription.get("status"),
            subscription_expire=_subscription_period_end(subscription),
            trial_eligible=False,
            clear_trial_expiry=True,
        )

        _logger.info(f"Ended free trial for user {customer.user_id}", extra={"subscription_id": subscription_id})
        return subscription_to_dict(subscription)

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def construct_event(self, payload: bytes, signature: Optional[str]):
        """Verify a webhook delivery and return the event. See billing.webhooks."""
        return verify_webhook_signature(
            payload,
            signature,
            self.settings.webhook_secret,
            sdk=self.sdk,
        )

    def record_event(self, event) -> bool:
        """False if this event id was already seen."""
        event_id = event.get("id")
        if not event_id:
            return True
        return customers.record_webhook_event(event_id, event.get("type", "unknown"))

    def forget_event(self, event) -> None:
        """Undo record_event after a failed handler so Stripe's retry is processed."""
        event_id = event.get("id")
        if event_id:
            customers.forget_webhook_event(event_id)

    def handle_payment_succeeded(self, invoice) -> bool:
        """
        Handle invoice.payment_succeeded.

        Copies the invoice's subscription into the customer record. A
        trialing subscription (the zero-amount trial invoice) makes the
        free trial eligible for early cancellation.

        Returns:
            True if a customer record was updated
        """
        customer_id = _object_id(invoice.get("customer"))
        customer = customers.get_customer_by_stripe_id(customer_id) if customer_id else None
        if not customer:
            _logger.warning(f"Payment succeeded for unknown customer {customer_id}")
            return False

        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            _logger.debug("Ignoring non-subscription invoice")
            return False

        subscription = self.sdk.Subscription.retrieve(subscription_id, **self._options())
        self._apply_subscription(customer_id, subscription)

        _logger.info(
            f"Payment succeeded for user {customer.user_id}",
            extra={"subscription_id": subscription_id, "invoice_id": invoice.get("id")},
        )
        return True

    def handle_payment_failed(self, invoice) -> bool:
        """
        Handle invoice.payment_failed.

        Marks the subscription past_due and drops trial eligibility.
        """
        customer_id = _object_id(invoice.get("customer"))
        customer = customers.get_customer_by_stripe_id(customer_id) if customer_id else None
        if not customer:
            _logger.warning(f"Payment failed for unknown customer {customer_id}")
            return False

        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            _logger.debug("Ignoring non-subscription invoice")
            return False

        customers.update_customer(
            customer_id,
            subscription_id=subscription_id,
            subscription_status="past_due",
            trial_eligible=False,
            clear_trial_expiry=True,
        )

        _logger.warning(
            f"Payment failed for user {customer.user_id}",
            extra={"subscription_id": subscription_id, "invoice_id": invoice.get("id")},
        )
        return True

    def _apply_subscription(self, customer_stripe_id: str, subscription) -> bool:
        status = subscription.get("status")
        trialing = status == "trialing"
        trial_end = _from_timestamp(subscription.get("trial_end")) if trialing else None

        return customers.update_customer(
            customer_stripe_id,
            subscription_id=subscription["id"],
            subscription_status=status,
            price_id=_subscription_price_id(subscription),
            subscription_expire=_subscription_period_end(subscription),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            trial_eligible=trialing,
            trial_expires_at=trial_end,
            clear_trial_expiry=not trialing,
        )
