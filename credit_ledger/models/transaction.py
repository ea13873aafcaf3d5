"""Ledger models.

- Transaction: immutable record of one value-affecting payment. Keyed by
  stripe_source_id (the payment intent or invoice it settles) so a
  redelivered event can never record the same payment twice. One-time
  items billed on a subscription's first invoice are recorded apart from
  the invoice, under "<payment intent ID>:one_time".
- CreditLedgerEntry: one credit delta applied to a customer's balance.
  The unique transaction_id is the apply-once guarantee for credit grants.
"""

import uuid

from credit_ledger.extensions import db


class Transaction(db.Model):
    __tablename__ = "transactions"

    PRODUCT_TYPES = ["credits", "subscription"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id = db.Column(
        db.String(36), db.ForeignKey("customers.id"), nullable=False
    )
    stripe_source_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # "pi_...", "pi_...:one_time" or "in_..."
    stripe_payment_intent_id = db.Column(
        db.String(255), unique=True, nullable=True
    )
    stripe_charge_id = db.Column(db.String(255), nullable=True)
    stripe_product_id = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Integer, nullable=True)  # minor units (cents)
    currency = db.Column(db.String(10), nullable=True)
    status = db.Column(db.String(50), nullable=False)  # succeeded | manual
    product_type = db.Column(db.String(50), nullable=False)  # credits | subscription
    credits_purchased = db.Column(db.Integer, nullable=False, default=0)
    stripe_metadata = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.CheckConstraint(
            "credits_purchased >= 0", name="ck_transactions_credits_non_negative"
        ),
    )

    # --- Relationships ---
    customer = db.relationship("Customer", back_populates="transactions")
    ledger_entry = db.relationship(
        "CreditLedgerEntry", back_populates="transaction", uselist=False
    )

    def __repr__(self):
        return f"<Transaction {self.stripe_source_id} ({self.credits_purchased} credits)>"


class CreditLedgerEntry(db.Model):
    __tablename__ = "credit_ledger_entries"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id = db.Column(
        db.String(36), db.ForeignKey("customers.id"), nullable=False
    )
    transaction_id = db.Column(
        db.String(36),
        db.ForeignKey("transactions.id"),
        unique=True,
        nullable=False,
    )
    delta = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    transaction = db.relationship("Transaction", back_populates="ledger_entry")

    def __repr__(self):
        return f"<CreditLedgerEntry txn={self.transaction_id} delta={self.delta}>"
