"""Webhook event log (audit table).

One row per received Stripe event, written after processing with the
outcome. stripe_event_id is NOT unique: a redelivered event gets another
row, while its ledger effects are deduplicated by the ledger tables.
"""

import uuid

from credit_ledger.extensions import db


class WebhookEventLog(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), nullable=False, index=True
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    processed = db.Column(db.Boolean, nullable=False, default=False)
    error_message = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=True)  # snapshot of data.object
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<WebhookEventLog {self.stripe_event_id} ({self.event_type})>"
