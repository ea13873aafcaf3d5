"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events.
Raw body is required for signature verification.
"""

import logging

import stripe
from flask import Blueprint, current_app, jsonify, request

from credit_ledger.services.product_catalog import ProductCatalog
from credit_ledger.services.stripe_service import verify_webhook_signature
from credit_ledger.services.webhook_service import WebhookDispatcher

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to WebhookDispatcher (idempotent via ledger unique keys)
    4. Return 200 on success, 500 on failure so Stripe redelivers

    A failed verification returns 400: Stripe does not retry it and no
    audit row is written.
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except (ValueError, stripe.error.SignatureVerificationError) as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": f"Webhook Error: {e}"}), 400

    # --- Process event ---
    dispatcher = WebhookDispatcher(ProductCatalog.from_config(current_app.config))
    outcome = dispatcher.process(event)

    if outcome.processed:
        return jsonify({"received": True, "processed": True}), 200

    logger.error(f"Webhook processing failed: {outcome.error_summary}")
    return jsonify({
        "error": "Webhook processing failed",
        "message": outcome.error_summary,
    }), 500
