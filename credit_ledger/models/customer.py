"""Customer models.

- Customer: internal identity linked 1:1 to a Stripe customer ID.
- CreditBalance: the customer's current credit balance. Only the ledger
  service changes it, always with an in-database increment.
"""

import uuid

from credit_ledger.extensions import db


class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cus_Abc..."
    email = db.Column(db.String(255), nullable=True)
    name = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    credit_balance = db.relationship(
        "CreditBalance", back_populates="customer", uselist=False
    )
    transactions = db.relationship(
        "Transaction", back_populates="customer", lazy="dynamic"
    )
    subscriptions = db.relationship(
        "Subscription", back_populates="customer", lazy="dynamic"
    )

    @property
    def balance(self):
        """Current credit balance (0 if no balance row exists yet)."""
        return self.credit_balance.balance if self.credit_balance else 0

    def __repr__(self):
        return f"<Customer stripe={self.stripe_customer_id}>"


class CreditBalance(db.Model):
    __tablename__ = "credit_balances"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id = db.Column(
        db.String(36),
        db.ForeignKey("customers.id"),
        unique=True,
        nullable=False,
    )
    balance = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.CheckConstraint("balance >= 0", name="ck_credit_balances_non_negative"),
    )

    # --- Relationships ---
    customer = db.relationship("Customer", back_populates="credit_balance")

    def __repr__(self):
        return f"<CreditBalance customer={self.customer_id} balance={self.balance}>"
