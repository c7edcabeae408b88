# billing/customers.py
"""
Customer store.

SQLite persistence for billing customers plus the two idempotency
ledgers: consumed checkout sessions and processed webhook events.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from billing.models import Customer, ActiveSubscription, FreeTrial
from persistence.db import get_db, init_db

_logger = logging.getLogger(__name__)


class CustomerExistsError(Exception):
    """User already has a customer, or the Stripe id is taken."""
    pass


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_customer(row) -> Customer:
    return Customer(
        user_id=row["user_id"],
        customer_stripe_id=row["customer_stripe_id"],
        email=row["email"],
        active_subscription=ActiveSubscription(
            subscription_id=row["subscription_id"],
            status=row["subscription_status"],
            price_id=row["price_id"],
            subscription_expire=_parse_dt(row["subscription_expire"]),
            cancel_at_period_end=bool(row["cancel_at_period_end"]),
        ),
        free_trial=FreeTrial(
            eligible=bool(row["trial_eligible"]),
            expires_at=_parse_dt(row["trial_expires_at"]),
        ),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def create_customer(user_id: str, customer_stripe_id: str, email: Optional[str] = None) -> Customer:
    """
    Store a new customer for a user.

    Raises:
        CustomerExistsError: If the user already has a customer or the
            Stripe id is already linked to another user
    """
    init_db()
    customer = Customer(user_id=user_id, customer_stripe_id=customer_stripe_id, email=email)

    try:
        with get_db() as conn:
            conn.execute(
                """
                INSERT INTO customers (user_id, customer_stripe_id, email, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    customer.user_id,
                    customer.customer_stripe_id,
                    customer.email,
                    customer.created_at.isoformat(),
                    customer.updated_at.isoformat(),
                ),
            )
    except sqlite3.IntegrityError as e:
        raise CustomerExistsError(f"Customer already exists for user {user_id}: {e}")

    _logger.info(f"Stored customer {customer_stripe_id} for user {user_id}")
    return customer


def get_customer_by_user(user_id: str) -> Optional[Customer]:
    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM customers WHERE user_id = ?",
            (user_id,),
        ).fetchone()

    return _row_to_customer(row) if row else None


def get_customer_by_stripe_id(customer_stripe_id: str) -> Optional[Customer]:
    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM customers WHERE customer_stripe_id = ?",
            (customer_stripe_id,),
        ).fetchone()

    return _row_to_customer(row) if row else None


def update_customer(
    customer_stripe_id: str,
    subscription_id: Optional[str] = None,
    subscription_status: Optional[str] = None,
    price_id: Optional[str] = None,
    subscription_expire: Optional[datetime] = None,
    cancel_at_period_end: Optional[bool] = None,
    trial_eligible: Optional[bool] = None,
    trial_expires_at: Optional[datetime] = None,
    clear_trial_expiry: bool = False,
) -> bool:
    """
    Update the mirrored subscription/trial fields of a customer.

    Arguments left as None are not touched.

    Returns:
        True if a customer row was updated
    """
    init_db()

    updates = []
    params: list = []

    if subscription_id is not None:
        updates.append("subscription_id = ?")
        params.append(subscription_id)

    if subscription_status is not None:
        updates.append("subscription_status = ?")
        params.append(subscription_status)

    if price_id is not None:
        updates.append("price_id = ?")
        params.append(price_id)

    if subscription_expire is not None:
        updates.append("subscription_expire = ?")
        params.append(subscription_expire.isoformat())

    if cancel_at_period_end is not None:
        updates.append("cancel_at_period_end = ?")
        params.append(int(cancel_at_period_end))

    if trial_eligible is not None:
        updates.append("trial_eligible = ?")
        params.append(int(trial_eligible))

    if trial_expires_at is not None:
        updates.append("trial_expires_at = ?")
        params.append(trial_expires_at.isoformat())
    elif clear_trial_expiry:
        updates.append("trial_expires_at = NULL")

    updates.append("updated_at = ?")
    params.append(datetime.utcnow().isoformat())

    params.append(customer_stripe_id)

    with get_db() as conn:
        cursor = conn.execute(
            f"UPDATE customers SET {', '.join(updates)} WHERE customer_stripe_id = ?",
            params,
        )
        return cursor.rowcount > 0


def consume_checkout_session(
    session_id: str,
    customer_stripe_id: str,
    subscription_id: Optional[str] = None,
) -> bool:
    """
    Mark a checkout session as consumed.

    Returns:
        True the first time, False if it was already consumed
    """
    init_db()

    with get_db() as conn:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO checkout_sessions (id, customer_stripe_id, subscription_id, consumed_at)
            VALUES (?, ?, ?, ?)
            """,
            (session_id, customer_stripe_id, subscription_id, datetime.utcnow().isoformat()),
        )
        return cursor.rowcount > 0


def record_webhook_event(event_id: str, event_type: str) -> bool:
    """
    Remember a webhook event id.

    Returns:
        True if the event is new, False for a repeated delivery
    """
    init_db()

    with get_db() as conn:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO webhook_events (id, event_type, received_at)
            VALUES (?, ?, ?)
            """,
            (event_id, event_type, datetime.utcnow().isoformat()),
        )
        return cursor.rowcount > 0


def forget_webhook_event(event_id: str) -> bool:
    """
    Drop a webhook event id so a redelivery is processed again.

    Returns:
        True if the id was recorded
    """
    init_db()

    with get_db() as conn:
        cursor = conn.execute("DELETE FROM webhook_events WHERE id = ?", (event_id,))
        return cursor.rowcount > 0
