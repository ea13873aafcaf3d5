"""Stripe service — signature verification and read-only Stripe queries.

Responsible for:
- Verifying webhook signatures and constructing the event
- Retrieving customers, checkout sessions, line items, prices, invoices
  and subscriptions referenced by event payloads

Every query returns plain dicts. Newer SDK releases no longer make
StripeObject a dict subclass, so results are converted once here and the
handlers only ever use dict access.
"""

import stripe
from flask import current_app


def to_dict(obj):
    """Convert a Stripe SDK object (or None / dict) to a plain dict."""
    if obj is None or isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _configure():
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    stripe.api_version = current_app.config["STRIPE_API_VERSION"]


def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    Returns the verified event as a dict.
    Raises stripe.error.SignatureVerificationError on invalid signature
    and ValueError on an unparseable payload.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    return to_dict(event)


def retrieve_customer(stripe_customer_id):
    _configure()
    return to_dict(stripe.Customer.retrieve(stripe_customer_id))


def find_checkout_session_for_payment_intent(payment_intent_id):
    """Return the checkout session that created a payment intent, or None."""
    _configure()
    sessions = to_dict(stripe.checkout.Session.list(
        payment_intent=payment_intent_id,
        limit=1,
    ))
    data = sessions.get("data") or []
    return to_dict(data[0]) if data else None


def find_checkout_session_for_subscription(stripe_subscription_id):
    """Return the checkout session that created a subscription, or None.

    Subscription-mode sessions carry no payment intent of their own; the
    first payment is made on the subscription's first invoice.
    """
    _configure()
    sessions = to_dict(stripe.checkout.Session.list(
        subscription=stripe_subscription_id,
        limit=1,
    ))
    data = sessions.get("data") or []
    return to_dict(data[0]) if data else None


def list_line_items(session_id):
    _configure()
    items = to_dict(stripe.checkout.Session.list_line_items(session_id, limit=100))
    return [to_dict(item) for item in items.get("data") or []]


def retrieve_price(price_id):
    _configure()
    return to_dict(stripe.Price.retrieve(price_id))


def retrieve_invoice(invoice_id):
    _configure()
    return to_dict(stripe.Invoice.retrieve(invoice_id))


def retrieve_subscription(stripe_subscription_id):
    _configure()
    return to_dict(stripe.Subscription.retrieve(stripe_subscription_id))
