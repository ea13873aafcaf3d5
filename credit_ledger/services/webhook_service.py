"""Webhook service — reconciles verified Stripe events into the ledger.

Responsible for:
- Routing each event to exactly one handler by event type
- Converting handler failures into a ProcessOutcome (never raising)
- Writing one audit row per event, whatever the outcome

Idempotency is not done here by skipping known event IDs: every handler is
safe to re-run because transactions, credit grants, customers and
subscriptions are all written with insert-or-ignore on unique keys.

Which event kind credits which purchase:
- One-time checkout line items: payment_intent.succeeded only.
- Recurring line items, first period: checkout.session.completed, or
  invoice.payment_succeeded for the subscription's first invoice. Both key
  the Transaction on that invoice ID, so only the first to arrive credits.
- Renewals: invoice.payment_succeeded.
- A payment intent that pays an invoice credits only the one-time items of
  the checkout session behind that invoice, as a separate Transaction keyed
  "<payment intent ID>:one_time". Everything else on the invoice is left to
  the invoice handler.
"""

import logging
from collections import namedtuple
from datetime import datetime, timezone

from credit_ledger.extensions import db
from credit_ledger.services import stripe_service
from credit_ledger.services.audit_service import log_webhook_event
from credit_ledger.services.customer_service import (
    find_customer,
    get_or_create_customer,
)
from credit_ledger.services.ledger_service import grant_credits, record_transaction
from credit_ledger.services.subscription_service import (
    cancel_subscription,
    update_subscription,
    upsert_subscription,
)

logger = logging.getLogger(__name__)


class ProcessOutcome(namedtuple("ProcessOutcome", ["processed", "error_summary"])):
    """Result reported to the transport layer."""

    __slots__ = ()

    def to_dict(self):
        if self.processed:
            return {"processed": True}
        return {"processed": False, "error_summary": self.error_summary}


# One checkout line item, resolved against the product catalog.
Purchase = namedtuple(
    "Purchase",
    ["price_id", "product_id", "quantity", "recurring", "credits", "amount"],
)


def _object_id(value):
    """Stripe fields may hold an ID or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _timestamp(ts):
    if ts:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return None


def _extract_period(sub_data, field):
    """Extract current_period_start/end from a Stripe subscription object.

    In newer Stripe API versions the period bounds moved from the
    subscription top level to items.data[0]. Checks both locations.
    """
    ts = sub_data.get(field)
    if not ts:
        items = sub_data.get("items")
        if items and items.get("data"):
            ts = items["data"][0].get(field)
    return _timestamp(ts)


def _subscription_items(sub_data):
    return (sub_data.get("items") or {}).get("data") or []


def _subscription_product_id(sub_data):
    items = _subscription_items(sub_data)
    if not items:
        return None
    return _object_id((items[0].get("price") or {}).get("product"))


def _is_cancelling(sub_data):
    # Stripe uses cancel_at_period_end OR cancel_at (a future timestamp)
    return bool(
        sub_data.get("cancel_at_period_end", False)
        or sub_data.get("cancel_at") is not None
    )


def _invoice_subscription_id(invoice):
    """Subscription an invoice bills, or None for one-off invoices.

    Newer API versions moved it to parent.subscription_details.subscription.
    """
    subscription = invoice.get("subscription")
    if not subscription:
        parent = invoice.get("parent") or {}
        subscription = (parent.get("subscription_details") or {}).get("subscription")
    return _object_id(subscription)


def resolve_line_item_purchases(session_id, catalog):
    """Resolve every line item of a checkout session to a Purchase.

    Shared by the checkout and payment-intent handlers so both classify
    recurring vs one-time items and look up credits the same way.
    """
    purchases = []
    for item in stripe_service.list_line_items(session_id):
        price = stripe_service.retrieve_price(_object_id(item.get("price")))
        product_id = _object_id(price.get("product"))
        quantity = item.get("quantity") or 1
        purchases.append(Purchase(
            price_id=price.get("id"),
            product_id=product_id,
            quantity=quantity,
            recurring=price.get("type") == "recurring",
            credits=catalog.credits_for(product_id) * quantity,
            amount=item.get("amount_total"),
        ))
    return purchases


class WebhookDispatcher:
    """Routes verified Stripe events to their handlers.

    Holds no per-event state; one instance may process any number of events.
    """

    def __init__(self, catalog):
        self.catalog = catalog
        self.handlers = {
            "payment_intent.succeeded": self._handle_payment_intent_succeeded,
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_invoice_payment_succeeded,
        }

    def process(self, event):
        """Apply a verified event and record the outcome.

        Returns ProcessOutcome. Never raises: handler errors are rolled
        back, logged, and reported as processed=False so the caller can
        answer non-2xx and let Stripe redeliver.
        """
        event_id = event.get("id")
        event_type = event.get("type")
        payload = (event.get("data") or {}).get("object") or {}

        logger.info(f"Received event {event_id}: {event_type}")

        handler = self.handlers.get(event_type)
        try:
            if handler:
                handler(payload)
            else:
                logger.info(f"Unhandled event type: {event_type}")
            db.session.commit()
            outcome = ProcessOutcome(processed=True, error_summary=None)
        except Exception as e:
            logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
            db.session.rollback()
            outcome = ProcessOutcome(
                processed=False, error_summary=str(e) or e.__class__.__name__
            )

        log_webhook_event(
            event_id,
            event_type,
            outcome.processed,
            outcome.error_summary,
            payload,
        )
        return outcome

    # ──────────────────────────────────────────────
    # Shared helpers
    # ──────────────────────────────────────────────

    def _resolve_customer(self, stripe_customer_id):
        """Local Customer for a Stripe customer, fetching details on first sight."""
        customer = find_customer(stripe_customer_id)
        if customer:
            return customer
        stripe_customer = stripe_service.retrieve_customer(stripe_customer_id) or {}
        return get_or_create_customer(
            stripe_customer_id,
            stripe_customer.get("email"),
            stripe_customer.get("name"),
        )

    def _subscription_credits(self, sub_data):
        return sum(
            self.catalog.credits_for(_object_id((item.get("price") or {}).get("product")))
            * (item.get("quantity") or 1)
            for item in _subscription_items(sub_data)
        )

    # ──────────────────────────────────────────────
    # Event Handlers
    # ──────────────────────────────────────────────

    def _one_time_purchases(self, session):
        if not session:
            return []
        return [
            p for p in resolve_line_item_purchases(session["id"], self.catalog)
            if not p.recurring
        ]

    def _checkout_session_for_invoice(self, invoice_id):
        """Checkout session behind a subscription's first invoice, or None.

        Only the invoice created by a subscription-mode checkout can carry
        that session's one-time items; renewals never do.
        """
        invoice = stripe_service.retrieve_invoice(invoice_id)
        if invoice.get("billing_reason") != "subscription_create":
            return None
        stripe_subscription_id = _invoice_subscription_id(invoice)
        if not stripe_subscription_id:
            return None
        return stripe_service.find_checkout_session_for_subscription(stripe_subscription_id)

    def _handle_payment_intent_succeeded(self, payment_intent):
        """Handle payment_intent.succeeded — one-time purchases.

        Credits the one-time line items of the originating checkout session.
        Recurring items in the same session are credited by the checkout /
        invoice handlers, never here.

        A subscription-mode checkout bills its one-time items on the
        subscription's first invoice, so the payment intent of that invoice
        still credits them. They get their own Transaction, keyed apart from
        the invoice's, without claiming the payment intent ID the invoice
        Transaction records.
        """
        payment_intent_id = payment_intent["id"]
        logger.info(f"Processing payment_intent.succeeded: {payment_intent_id}")

        stripe_customer_id = _object_id(payment_intent.get("customer"))
        if not stripe_customer_id:
            logger.warning(
                f"payment_intent.succeeded {payment_intent_id} has no customer, skipping"
            )
            return

        session = stripe_service.find_checkout_session_for_payment_intent(payment_intent_id)

        invoice_id = _object_id(payment_intent.get("invoice"))
        if invoice_id:
            if not session:
                session = self._checkout_session_for_invoice(invoice_id)
            one_time = self._one_time_purchases(session)
            if not one_time:
                logger.info(
                    f"Payment intent {payment_intent_id} pays invoice {invoice_id}, "
                    f"left to invoice.payment_succeeded"
                )
                return
            source_id = f"{payment_intent_id}:one_time"
            transaction_payment_intent_id = None
            amount = sum(p.amount or 0 for p in one_time)
        else:
            one_time = self._one_time_purchases(session)
            source_id = payment_intent_id
            transaction_payment_intent_id = payment_intent_id
            amount = payment_intent.get("amount")

        customer = self._resolve_customer(stripe_customer_id)
        credits = sum(p.credits for p in one_time)

        transaction, _ = record_transaction(
            customer_id=customer.id,
            stripe_source_id=source_id,
            stripe_payment_intent_id=transaction_payment_intent_id,
            stripe_charge_id=_object_id(payment_intent.get("latest_charge")),
            stripe_product_id=one_time[0].product_id if one_time else None,
            amount=amount,
            currency=payment_intent.get("currency"),
            # Zero-credit intents are recorded as subscription payments
            product_type="credits" if credits > 0 else "subscription",
            credits_purchased=credits,
            stripe_metadata=payment_intent.get("metadata"),
        )

        if transaction.credits_purchased > 0:
            grant_credits(
                customer.id,
                transaction.credits_purchased,
                transaction.id,
                f"Purchased {transaction.credits_purchased} credits",
            )

    def _handle_checkout_completed(self, session):
        """Handle checkout.session.completed — subscription sign-up.

        Upserts the subscription, then records the first-period transaction
        and grants its credits. The subscription is committed before the
        ledger writes: if those fail, the event is reported as failed and
        redelivered, but the subscription state is kept.
        """
        session_id = session["id"]
        logger.info(f"Processing checkout.session.completed: {session_id}")

        stripe_customer_id = _object_id(session.get("customer"))
        if not stripe_customer_id:
            logger.warning(f"checkout.session.completed {session_id} has no customer, skipping")
            return

        customer = self._resolve_customer(stripe_customer_id)

        # One-time line items belong to payment_intent.succeeded
        recurring = [
            p for p in resolve_line_item_purchases(session_id, self.catalog)
            if p.recurring
        ]
        if not recurring:
            logger.info(f"Checkout {session_id} has no recurring items, nothing to do")
            return

        stripe_subscription_id = _object_id(session.get("subscription"))
        if not stripe_subscription_id:
            logger.warning(
                f"checkout.session.completed {session_id} has recurring items "
                f"but no subscription, skipping"
            )
            return

        upsert_subscription(
            stripe_subscription_id=stripe_subscription_id,
            customer_id=customer.id,
            product_id=recurring[0].product_id,
            status="active",
            current_period_start=_timestamp(session.get("created")),
        )
        db.session.commit()

        credits = sum(p.credits for p in recurring)
        transaction, _ = record_transaction(
            customer_id=customer.id,
            stripe_source_id=_object_id(session.get("invoice")) or session_id,
            stripe_payment_intent_id=_object_id(session.get("payment_intent")),
            stripe_product_id=recurring[0].product_id,
            amount=session.get("amount_total"),
            currency=session.get("currency"),
            product_type="subscription",
            credits_purchased=credits,
            stripe_metadata=session.get("metadata"),
        )

        if transaction.credits_purchased > 0:
            grant_credits(
                customer.id,
                transaction.credits_purchased,
                transaction.id,
                f"Subscription: {transaction.credits_purchased} monthly credits",
            )

    def _handle_subscription_updated(self, sub_data):
        """Handle customer.subscription.updated.

        Overwrites status, period bounds and cancel flag. If the subscription
        is not known yet but its customer is, the row is created from the
        payload. No credit side effects.
        """
        stripe_subscription_id = sub_data["id"]
        logger.info(f"Processing customer.subscription.updated: {stripe_subscription_id}")

        fields = {
            "status": sub_data.get("status", "active"),
            "current_period_start": _extract_period(sub_data, "current_period_start"),
            "current_period_end": _extract_period(sub_data, "current_period_end"),
            "cancel_at_period_end": _is_cancelling(sub_data),
        }

        if update_subscription(stripe_subscription_id, **fields):
            return

        customer = find_customer(_object_id(sub_data.get("customer")))
        if not customer:
            logger.warning(
                f"subscription.updated: no local record for sub={stripe_subscription_id}"
            )
            return

        _, created = upsert_subscription(
            stripe_subscription_id=stripe_subscription_id,
            customer_id=customer.id,
            product_id=_subscription_product_id(sub_data),
            **fields,
        )
        if not created:
            update_subscription(stripe_subscription_id, **fields)

    def _handle_subscription_deleted(self, sub_data):
        """Handle customer.subscription.deleted.

        Marks the subscription canceled. Balance and transactions are untouched.
        """
        stripe_subscription_id = sub_data["id"]
        logger.info(f"Processing customer.subscription.deleted: {stripe_subscription_id}")

        if not cancel_subscription(stripe_subscription_id):
            logger.warning(
                f"subscription.deleted: no local record for sub={stripe_subscription_id}"
            )

    def _handle_invoice_payment_succeeded(self, invoice):
        """Handle invoice.payment_succeeded — subscription renewals.

        Credits come from the subscription's current items. Invoices not
        tied to a subscription are ignored.
        """
        invoice_id = invoice["id"]
        logger.info(f"Processing invoice.payment_succeeded: {invoice_id}")

        stripe_subscription_id = _invoice_subscription_id(invoice)
        if not stripe_subscription_id:
            logger.info(f"Invoice {invoice_id} is not for a subscription, skipping")
            return

        stripe_customer_id = _object_id(invoice.get("customer"))
        if not stripe_customer_id:
            logger.warning(f"invoice.payment_succeeded {invoice_id} has no customer, skipping")
            return

        sub_data = stripe_service.retrieve_subscription(stripe_subscription_id)
        product_id = _subscription_product_id(sub_data)
        credits = self._subscription_credits(sub_data)

        customer = get_or_create_customer(
            stripe_customer_id,
            invoice.get("customer_email"),
            invoice.get("customer_name"),
        )

        # Renewal may arrive before the checkout event that creates the row
        upsert_subscription(
            stripe_subscription_id=stripe_subscription_id,
            customer_id=customer.id,
            product_id=product_id,
            status=sub_data.get("status", "active"),
            current_period_start=_extract_period(sub_data, "current_period_start"),
            current_period_end=_extract_period(sub_data, "current_period_end"),
            cancel_at_period_end=_is_cancelling(sub_data),
        )

        transaction, _ = record_transaction(
            customer_id=customer.id,
            stripe_source_id=invoice_id,
            stripe_payment_intent_id=_object_id(invoice.get("payment_intent")),
            stripe_charge_id=_object_id(invoice.get("charge")),
            stripe_product_id=product_id,
            amount=invoice.get("amount_paid"),
            currency=invoice.get("currency"),
            product_type="subscription",
            credits_purchased=credits,
            stripe_metadata=invoice.get("metadata"),
        )

        if transaction.credits_purchased > 0:
            grant_credits(
                customer.id,
                transaction.credits_purchased,
                transaction.id,
                f"Subscription renewal: {transaction.credits_purchased} credits",
            )
