"""
Payment API endpoints.

Each route pulls its inputs off the request, calls BillingService and
maps the result to ``{"status": <code>, <payload key>: ...}``.
Precondition failures answer 400 with a ``message``; Stripe and network
errors propagate to the default error handler.

Stripe and SQLite calls block, so routes are plain ``def`` and run in
the threadpool; the webhook reads the raw body asynchronously and hands
its blocking work to ``run_in_threadpool``.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from auth.middleware import get_required_user
from auth.models import User
from billing.service import (
    BillingDisabledError,
    BillingService,
    CheckoutSessionNotFoundError,
    CustomerNotFoundError,
    SubscriptionNotFoundError,
    TrialNotEligibleError,
)
from billing.webhooks import (
    SIGNATURE_FAILED_MESSAGE,
    SignatureVerificationError,
    dispatch_webhook_event,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

SubscriptionStatus = Literal[
    "all",
    "active",
    "trialing",
    "past_due",
    "unpaid",
    "canceled",
    "incomplete",
    "incomplete_expired",
    "paused",
    "ended",
]


def get_billing_service(request: Request) -> BillingService:
    """FastAPI dependency: the BillingService created at startup."""
    return request.app.state.billing


def _ok(**payload) -> dict:
    return {"status": 200, **payload}


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"status": 400, "message": message})


async def billing_disabled_handler(request: Request, exc: BillingDisabledError) -> JSONResponse:
    """Registered on the app for BillingDisabledError."""
    logger.error(f"Billing request while billing disabled: {request.url.path}")
    return JSONResponse(status_code=503, content={"status": 503, "message": str(exc)})


# =============================================================================
# Request Schemas
# =============================================================================


class CheckoutSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: str = Field(..., alias="priceId", min_length=1)
    quantity: int = Field(default=1, ge=1, le=100)
    success_url: Optional[str] = Field(default=None, alias="successUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")


class UpdateSubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: str = Field(..., alias="subscriptionId", min_length=1)
    # true: cancel at period end, false: keep renewing
    cancel_at_period_end: bool = Field(..., alias="bool")


# =============================================================================
# Routes
# =============================================================================


# Webhook first: it is the only unauthenticated route
@router.post("/webhook")
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    billing: BillingService = Depends(get_billing_service),
):
    """
    Receive a Stripe webhook.

    Verifies the signature, queues the matching invoice handler and
    acknowledges immediately. Unhandled event types are logged and ignored.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = await run_in_threadpool(billing.construct_event, payload, signature)
    except SignatureVerificationError:
        return _bad_request(SIGNATURE_FAILED_MESSAGE)

    await run_in_threadpool(dispatch_webhook_event, event, billing, background_tasks.add_task)
    return {"received": True}


@router.post("/customer-portal")
def customer_portal(
    user: User = Depends(get_required_user),
    billing: BillingService = Depends(get_billing_service),
):
    """Billing-portal session for the caller's Stripe customer."""
    try:
        customer = billing.require_customer(user.id)
    except CustomerNotFoundError as e:
        return _bad_request(str(e))

    session = billing.create_portal_session(customer)
    return _ok(session=session)


@router.get("/subscriptions/me")
def get_subscription_me(
    user: User = Depends(get_required_user),
    billing: BillingService = Depends(get_billing_service),
):
    return _ok(subscriptions=billing.get_my_subscriptions(user.id))


@router.post("/customer")
def create_customer(
    user: User = Depends(get_required_user),
    billing: BillingService = Depends(get_billing_service),
):
    """Create or get the caller's Stripe customer."""
    customer = billing.get_or_create_customer(user)
    return _ok(customer=customer.to_dict())


@router.post("/checkout-sessions")
def create_checkout_session(
    body: CheckoutSessionRequest,
    user: User = Depends(get_required_user),
    billing: BillingService = Depends(get_billing_service),
):
    """Start a subscription checkout; first-time subscribers get the free trial."""
    customer = billing.get_or_create_customer(user)
    session = billing.create_checkout_session(
        customer,
        price_id=body.price_id,
        quantity=body.quantity,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    return _ok(session=session)


@router.get("/checkout-sessions")
def get_checkout_session(
    session_id: str = Query(..., alias="sessionId", min_length=1),
    user: User = Depends(get_required_user),
    billing: BillingService = Depends(get_billing_service),
):
    try:
        customer = billing.require_customer(user.id)
        session = billing.get_checkout_session(customer, session_id)
    except (CustomerNotFoundError, CheckoutSessionNotFoundError):
        return _bad_request("checkout session not found")

    return _ok(session=session)


@router.get("/prices")
def price_list(
    active_product: bool = Query(default=True, alias="activeProduct"),
    user: User = Depends(get_required_user),
    billing: BillingService = Depends(get_billing_service),
):
    """Recurring prices; only active products unless activeProduct=false."""
    return _ok(prices=billing.list_prices(active_product=active_product))


@router.post("/subscriptions/update")
def update_subscription_plan(
    body: UpdateSubscriptionRequest,
    user: User = Depends(get_required_user),
    billing: BillingService = Depends(get_billing_service),
):
    try:
        customer = billing.require_customer(user.id)
        subscription = billing.update_subscription_plan(
            customer,
            subscription_id=body.subscription_id,
            cancel_at_period_end=body.cancel_at_period_end,
        )
    except (CustomerNotFoundError, SubscriptionNotFoundError):
        return _bad_request("subscription not found")

    return _ok(subscription=subscription)


@router.get("/subscriptions")
def get_subscriptions(
    status: SubscriptionStatus = Query(default="all"),
    user: User = Depends(get_required_user),
    billing: BillingService = Depends(get_billing_service),
):
    """Stripe subscriptions of the caller, filtered by status."""
    customer = billing.find_customer(user.id)
    if not customer:
        return _ok(subscriptions=[])

    return _ok(subscriptions=billing.list_subscriptions(customer.customer_stripe_id, status))


@router.post("/trial/cancel")
def handle_trial_end(
    user: User = Depends(get_required_user),
    billing: BillingService = Depends(get_billing_service),
):
    """End the caller's free trial early."""
    customer = billing.find_customer(user.id)
    if not customer:
        return _bad_request("trial canceling failed")

    try:
        billing.end_trial(customer)
    except TrialNotEligibleError:
        return _bad_request("trial canceling failed")

    return _ok(message="trial cancelled")
