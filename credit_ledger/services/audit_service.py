"""Audit service — append-only log of every webhook event received.

Written after the handler has finished, whatever its outcome. The write is
best-effort: a failure here is logged and swallowed, because the response
to Stripe has already been decided by the handler result.
"""

import logging

from credit_ledger.extensions import db
from credit_ledger.models.webhook_event import WebhookEventLog

logger = logging.getLogger(__name__)


def log_webhook_event(event_id, event_type, processed, error_message=None,
                      payload=None):
    """Insert one WebhookEventLog row and commit it.

    Returns the row, or None if the write failed.
    """
    try:
        entry = WebhookEventLog(
            stripe_event_id=event_id,
            event_type=event_type,
            processed=processed,
            error_message=error_message,
            payload=payload,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        logger.exception(f"Failed to write audit log for event {event_id}")
        return None


def recent_failed_events(limit=20):
    """Most recent events that were not processed successfully."""
    return (
        WebhookEventLog.query
        .filter_by(processed=False)
        .order_by(WebhookEventLog.created_at.desc())
        .limit(limit)
        .all()
    )
