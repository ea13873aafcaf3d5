"""Ledger service — transaction records and apply-once credit grants.

Responsible for:
- Recording one Transaction per real-world payment (keyed by the Stripe
  object it settles, so redelivered events return the existing row)
- Granting credits exactly once per transaction
- Reading a customer's current balance

Credit grants are idempotent on transaction_id: the ledger entry insert is
INSERT ... ON CONFLICT DO NOTHING against a unique key, and the balance is
incremented in the database only when that insert actually wrote a row.
Never replace this with a read-modify-write of the balance.
"""

import logging
from collections import namedtuple

from sqlalchemy import or_, update

from credit_ledger.extensions import db
from credit_ledger.models.customer import CreditBalance
from credit_ledger.models.transaction import CreditLedgerEntry, Transaction
from credit_ledger.services.customer_service import ensure_credit_balance
from credit_ledger.services.persistence import WriteResult, insert_or_ignore

logger = logging.getLogger(__name__)


CreditGrant = namedtuple("CreditGrant", ["applied", "reason"])

GRANT_APPLIED = CreditGrant(applied=True, reason=None)
GRANT_DUPLICATE = CreditGrant(applied=False, reason="duplicate")
GRANT_ZERO = CreditGrant(applied=False, reason="zero_credits")


def find_transaction(stripe_source_id, stripe_payment_intent_id=None):
    """Look up a Transaction by source ID (or payment intent ID)."""
    filters = [Transaction.stripe_source_id == stripe_source_id]
    if stripe_payment_intent_id:
        filters.append(
            Transaction.stripe_payment_intent_id == stripe_payment_intent_id
        )
    return Transaction.query.filter(or_(*filters)).first()


def record_transaction(customer_id, stripe_source_id, product_type,
                       credits_purchased=0, status="succeeded",
                       stripe_payment_intent_id=None, stripe_charge_id=None,
                       stripe_product_id=None, amount=None, currency=None,
                       stripe_metadata=None):
    """Record a Transaction unless one already exists for this payment.

    Returns (transaction, created). created is False when a previous
    delivery (or the other event kind for the same payment) already
    recorded it; the existing row is returned unchanged.
    """
    if isinstance(credits_purchased, bool) or not isinstance(credits_purchased, int):
        raise ValueError(f"credits_purchased must be an integer, got {credits_purchased!r}")
    if credits_purchased < 0:
        raise ValueError("credits_purchased must be >= 0")
    if product_type not in Transaction.PRODUCT_TYPES:
        raise ValueError(f"Unknown product_type '{product_type}'")

    result = insert_or_ignore(
        Transaction,
        customer_id=customer_id,
        stripe_source_id=stripe_source_id,
        stripe_payment_intent_id=stripe_payment_intent_id,
        stripe_charge_id=stripe_charge_id,
        stripe_product_id=stripe_product_id,
        amount=amount,
        currency=currency,
        status=status,
        product_type=product_type,
        credits_purchased=credits_purchased,
        stripe_metadata=stripe_metadata or {},
    )

    transaction = find_transaction(stripe_source_id, stripe_payment_intent_id)
    if result is WriteResult.DUPLICATE_KEY:
        logger.info(
            f"Transaction for {stripe_source_id} already recorded "
            f"({transaction.id}), not duplicating"
        )
        return transaction, False

    logger.info(
        f"Recorded transaction {transaction.id} for {stripe_source_id} "
        f"({credits_purchased} credits)"
    )
    return transaction, True


def grant_credits(customer_id, credits, transaction_id, description=None):
    """Add `credits` to a customer's balance, at most once per transaction.

    Returns a CreditGrant:
        (True, None)            -> balance incremented
        (False, "duplicate")    -> this transaction was already granted
        (False, "zero_credits") -> nothing to apply, database untouched
    Raises ValueError for negative or non-integer credits.
    """
    if isinstance(credits, bool) or not isinstance(credits, int):
        raise ValueError(f"credits must be an integer, got {credits!r}")
    if credits < 0:
        raise ValueError("credits must be >= 0")
    if credits == 0:
        return GRANT_ZERO

    result = insert_or_ignore(
        CreditLedgerEntry,
        customer_id=customer_id,
        transaction_id=transaction_id,
        delta=credits,
        description=description,
    )
    if result is WriteResult.DUPLICATE_KEY:
        logger.info(
            f"Credits for transaction {transaction_id} already granted, skipping"
        )
        return GRANT_DUPLICATE

    ensure_credit_balance(customer_id)
    db.session.execute(
        update(CreditBalance)
        .where(CreditBalance.customer_id == customer_id)
        .values(balance=CreditBalance.balance + credits)
    )
    db.session.flush()

    logger.info(
        f"Granted {credits} credits to customer {customer_id} "
        f"(transaction {transaction_id})"
    )
    return GRANT_APPLIED


def get_balance(customer_id):
    """Current credit balance for a customer (0 if none recorded)."""
    balance = db.session.execute(
        db.select(CreditBalance.balance).where(
            CreditBalance.customer_id == customer_id
        )
    ).scalar_one_or_none()
    return balance or 0
