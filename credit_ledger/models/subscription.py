"""Subscription model.

Tracks subscription lifecycle state synced from Stripe webhooks.
Rows are never deleted; cancellation is a status transition.
"""

import uuid

from credit_ledger.extensions import db


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    # -- Common statuses (synced from Stripe, other values are stored as-is) --
    STATUSES = [
        "active",
        "past_due",
        "canceled",
        "trialing",
        "unpaid",
        "incomplete_expired",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id = db.Column(
        db.String(36), db.ForeignKey("customers.id"), nullable=False
    )
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    stripe_product_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=False)
    current_period_start = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    current_period_end = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    customer = db.relationship("Customer", back_populates="subscriptions")

    def __repr__(self):
        return f"<Subscription {self.stripe_subscription_id} ({self.status})>"
