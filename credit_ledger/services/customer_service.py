"""Customer directory — find-or-create customers by Stripe customer ID.

Two events for the same purchase (checkout + payment intent) can see a new
Stripe customer at the same time. Creation goes through insert_or_ignore on
the unique stripe_customer_id, so concurrent attempts converge on one row:
the first writer wins and later email/name values are not applied.
"""

import logging

from credit_ledger.models.customer import CreditBalance, Customer
from credit_ledger.services.persistence import WriteResult, insert_or_ignore

logger = logging.getLogger(__name__)


def find_customer(stripe_customer_id):
    """Look up a Customer by Stripe customer ID. Returns Customer or None."""
    if not stripe_customer_id:
        return None
    return Customer.query.filter_by(
        stripe_customer_id=stripe_customer_id
    ).first()


def get_or_create_customer(stripe_customer_id, email=None, name=None):
    """Return the Customer for `stripe_customer_id`, creating it on first sight.

    Also makes sure the customer has a zero credit balance row, so credit
    grants only ever need an in-place increment.
    """
    if not stripe_customer_id:
        raise ValueError("stripe_customer_id is required")

    customer = find_customer(stripe_customer_id)
    if customer:
        return customer

    result = insert_or_ignore(
        Customer,
        stripe_customer_id=stripe_customer_id,
        email=email,
        name=name,
    )
    if result is WriteResult.DUPLICATE_KEY:
        logger.info(f"Customer {stripe_customer_id} created concurrently, reusing it")

    customer = find_customer(stripe_customer_id)
    ensure_credit_balance(customer.id)

    if result is WriteResult.INSERTED:
        logger.info(f"Created customer {customer.id} for {stripe_customer_id}")
    return customer


def ensure_credit_balance(customer_id):
    """Create the customer's balance row if it does not exist yet."""
    insert_or_ignore(CreditBalance, customer_id=customer_id, balance=0)
