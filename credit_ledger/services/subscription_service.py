"""Subscription service — lifecycle sync from Stripe webhook data.

Creation is insert-or-ignore: two events racing to establish the same
subscription (or a redelivered checkout event) leave exactly one row, and
the duplicate-key conflict is not an error. Status changes go through
update_subscription(), which overwrites only the fields it is given.
"""

import logging

from credit_ledger.extensions import db
from credit_ledger.models.subscription import Subscription
from credit_ledger.services.persistence import WriteResult, insert_or_ignore

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "status",
    "stripe_product_id",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
}


def find_subscription(stripe_subscription_id):
    return Subscription.query.filter_by(
        stripe_subscription_id=stripe_subscription_id
    ).first()


def upsert_subscription(stripe_subscription_id, customer_id, product_id,
                        status, current_period_start=None,
                        current_period_end=None, cancel_at_period_end=False):
    """Create a Subscription row unless one already exists.

    An existing row is returned untouched; later state comes from
    customer.subscription.updated, not from re-establishing events.

    Returns (subscription, created).
    """
    result = insert_or_ignore(
        Subscription,
        stripe_subscription_id=stripe_subscription_id,
        customer_id=customer_id,
        stripe_product_id=product_id,
        status=status,
        current_period_start=current_period_start,
        current_period_end=current_period_end,
        cancel_at_period_end=cancel_at_period_end,
    )

    subscription = find_subscription(stripe_subscription_id)
    if result is WriteResult.DUPLICATE_KEY:
        logger.info(
            f"Subscription {stripe_subscription_id} already exists, keeping it"
        )
        return subscription, False

    logger.info(f"Created subscription {stripe_subscription_id} ({status})")
    return subscription, True


def update_subscription(stripe_subscription_id, **fields):
    """Overwrite the given fields on an existing subscription.

    Returns the Subscription, or None if there is no local row.
    """
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update subscription fields: {sorted(unknown)}")

    subscription = find_subscription(stripe_subscription_id)
    if not subscription:
        return None

    for field, value in fields.items():
        setattr(subscription, field, value)
    db.session.flush()
    return subscription


def cancel_subscription(stripe_subscription_id):
    """Mark a subscription canceled. The row is kept."""
    return update_subscription(
        stripe_subscription_id,
        status="canceled",
        cancel_at_period_end=False,
    )
