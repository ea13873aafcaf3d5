"""Tests for the webhooks blueprint.

Covers:
- Webhook signature verification (missing, invalid, unparseable)
- Status code mapping (200 processed, 500 failed)
- One audit row per processed event, none on verification failure
- Redelivery of the same event id (no double credits)
- Unknown event types (accepted, logged as processed)
- Invoice renewal scenario end to end
"""

import json
from unittest.mock import patch

import stripe

from credit_ledger.models.customer import Customer
from credit_ledger.models.transaction import CreditLedgerEntry, Transaction
from credit_ledger.models.webhook_event import WebhookEventLog
from credit_ledger.services.ledger_service import get_balance


def make_event(event_id, event_type, obj):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def payment_intent(pi_id, customer="cus_buyer", amount=1000, **extra):
    obj = {
        "id": pi_id,
        "object": "payment_intent",
        "customer": customer,
        "amount": amount,
        "currency": "usd",
        "latest_charge": f"ch_{pi_id}",
        "invoice": None,
        "metadata": {},
    }
    obj.update(extra)
    return obj


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client):
        """POST /stripe/webhooks without signature -> 400."""
        resp = client.post(
            "/stripe/webhooks",
            data="{}",
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert b"Missing signature" in resp.data
        assert WebhookEventLog.query.count() == 0

    @patch("credit_ledger.services.stripe_service.stripe.Webhook.construct_event")
    def test_invalid_signature_returns_400(self, mock_construct, client):
        """Bad signature -> 400, event not processed, no audit row."""
        mock_construct.side_effect = stripe.error.SignatureVerificationError(
            "No signatures found matching the expected signature", "bad_sig"
        )

        resp = client.post(
            "/stripe/webhooks",
            data="{}",
            content_type="application/json",
            headers={"Stripe-Signature": "bad_sig"},
        )
        assert resp.status_code == 400
        assert b"Webhook Error" in resp.data
        assert WebhookEventLog.query.count() == 0

    @patch("credit_ledger.services.stripe_service.stripe.Webhook.construct_event")
    def test_invalid_payload_returns_400(self, mock_construct, client):
        """Unparseable body -> 400."""
        mock_construct.side_effect = ValueError("Invalid payload")

        resp = client.post(
            "/stripe/webhooks",
            data="not json",
            content_type="application/json",
            headers={"Stripe-Signature": "t=1,v1=abc"},
        )
        assert resp.status_code == 400
        assert WebhookEventLog.query.count() == 0

    def test_get_not_allowed(self, client):
        resp = client.get("/stripe/webhooks")
        assert resp.status_code == 405


class TestWebhookResponses:
    """Tests for outcome -> HTTP status mapping and audit rows."""

    def test_processed_event_returns_200(self, post_event, fake_stripe):
        fake_stripe.add_customer("cus_buyer", "buyer@example.com", "Buyer")

        resp = post_event(make_event(
            "evt_pi_001", "payment_intent.succeeded", payment_intent("pi_001")
        ))
        assert resp.status_code == 200
        assert json.loads(resp.data) == {"received": True, "processed": True}

        logs = WebhookEventLog.query.filter_by(stripe_event_id="evt_pi_001").all()
        assert len(logs) == 1
        assert logs[0].processed is True
        assert logs[0].error_message is None
        assert logs[0].payload["id"] == "pi_001"

    def test_failed_event_returns_500(self, post_event, fake_stripe):
        """Handler failure -> 500 so Stripe redelivers, audit row records it."""
        fake_stripe.mocks["customer"].side_effect = stripe.error.APIConnectionError(
            "Network is unreachable"
        )

        resp = post_event(make_event(
            "evt_pi_fail", "payment_intent.succeeded", payment_intent("pi_fail")
        ))
        assert resp.status_code == 500
        data = json.loads(resp.data)
        assert data["error"] == "Webhook processing failed"
        assert "Network is unreachable" in data["message"]

        log = WebhookEventLog.query.filter_by(stripe_event_id="evt_pi_fail").one()
        assert log.processed is False
        assert "Network is unreachable" in log.error_message
        assert Transaction.query.count() == 0

    def test_unknown_event_accepted(self, post_event):
        """Unknown event type -> 200, audited as processed, nothing else written."""
        resp = post_event(make_event("evt_unknown_001", "some.unknown.event", {"id": "x_1"}))
        assert resp.status_code == 200

        log = WebhookEventLog.query.filter_by(stripe_event_id="evt_unknown_001").one()
        assert log.processed is True
        assert log.event_type == "some.unknown.event"
        assert Customer.query.count() == 0

    def test_healthz(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert json.loads(resp.data) == {"status": "ok"}


class TestWebhookRedelivery:
    """At-least-once delivery: the same event id may arrive more than once."""

    def test_redelivered_payment_intent_credits_once(self, post_event, fake_stripe):
        fake_stripe.add_customer("cus_buyer", "buyer@example.com", "Buyer")
        fake_stripe.add_price("price_pack_100", "prod_credits_100")
        fake_stripe.add_checkout_session(
            "cs_pack", [("price_pack_100", 1)], payment_intent="pi_pack"
        )
        event = make_event("evt_pack", "payment_intent.succeeded", payment_intent("pi_pack"))

        assert post_event(event).status_code == 200
        assert post_event(event).status_code == 200

        customer = Customer.query.filter_by(stripe_customer_id="cus_buyer").one()
        assert get_balance(customer.id) == 100
        assert Transaction.query.filter_by(stripe_payment_intent_id="pi_pack").count() == 1
        assert CreditLedgerEntry.query.count() == 1

        # Each delivery is audited
        assert WebhookEventLog.query.filter_by(stripe_event_id="evt_pack").count() == 2


class TestInvoiceRenewalScenario:
    """evt_1: renewal of sub_A (500 credits) for cus_X holding 200 credits."""

    def test_renewal_adds_credits(self, post_event, fake_stripe, seed_customer):
        fake_stripe.add_subscription(
            "sub_A", "cus_X", [("price_monthly_500", "prod_monthly_500", 1)]
        )

        resp = post_event(make_event("evt_1", "invoice.payment_succeeded", {
            "id": "in_renewal_1",
            "object": "invoice",
            "customer": "cus_X",
            "subscription": "sub_A",
            "billing_reason": "subscription_cycle",
            "amount_paid": 4900,
            "currency": "usd",
            "payment_intent": "pi_renewal_1",
            "charge": "ch_renewal_1",
        }))
        assert resp.status_code == 200

        assert get_balance(seed_customer["customer_id"]) == 700

        transactions = Transaction.query.filter_by(
            customer_id=seed_customer["customer_id"]
        ).all()
        assert len(transactions) == 1
        assert transactions[0].credits_purchased == 500
        assert transactions[0].product_type == "subscription"
        assert transactions[0].stripe_source_id == "in_renewal_1"
        assert transactions[0].amount == 4900
