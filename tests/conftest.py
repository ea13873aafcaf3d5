"""Shared test fixtures for the credit ledger test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- catalog: the test product catalog
- seed_customer: an existing customer with a 200 credit balance
- fake_stripe: in-memory Stripe objects behind patched SDK calls
- post_event: send an event through /stripe/webhooks with a valid signature
"""

from unittest.mock import patch

import pytest

from credit_ledger import create_app
from credit_ledger.extensions import db as _db
from credit_ledger.models.customer import CreditBalance, Customer
from credit_ledger.services.product_catalog import ProductCatalog


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def catalog(app):
    return ProductCatalog.from_config(app.config)


@pytest.fixture
def seed_customer(db_session):
    """Customer cus_X with a balance of 200 credits.

    Returns plain IDs so tests can use them across sessions.
    """
    customer = Customer(
        stripe_customer_id="cus_X",
        email="x@example.com",
        name="Customer X",
    )
    _db.session.add(customer)
    _db.session.flush()
    _db.session.add(CreditBalance(customer_id=customer.id, balance=200))
    _db.session.commit()
    return {"customer_id": customer.id, "stripe_customer_id": "cus_X"}


class FakeStripe:
    """Stripe objects keyed by ID, served to the patched SDK calls."""

    def __init__(self):
        self.customers = {}
        self.prices = {}
        self.line_items = {}
        self.sessions_by_payment_intent = {}
        self.sessions_by_subscription = {}
        self.invoices = {}
        self.subscriptions = {}

    def add_customer(self, customer_id, email=None, name=None):
        self.customers[customer_id] = {
            "id": customer_id,
            "object": "customer",
            "email": email,
            "name": name,
        }

    def add_price(self, price_id, product_id, recurring=False, unit_amount=1000):
        self.prices[price_id] = {
            "id": price_id,
            "object": "price",
            "product": product_id,
            "type": "recurring" if recurring else "one_time",
            "unit_amount": unit_amount,
        }

    def add_checkout_session(self, session_id, items, payment_intent=None,
                             subscription=None):
        """items: list of (price_id, quantity). Add prices first."""
        self.line_items[session_id] = [
            {
                "id": f"li_{session_id}_{index}",
                "price": {"id": price_id},
                "quantity": quantity,
                "amount_total": self.prices[price_id]["unit_amount"] * quantity,
            }
            for index, (price_id, quantity) in enumerate(items)
        ]
        session = {
            "id": session_id,
            "object": "checkout.session",
            "payment_intent": payment_intent,
            "subscription": subscription,
        }
        if payment_intent:
            self.sessions_by_payment_intent[payment_intent] = session
        if subscription:
            self.sessions_by_subscription[subscription] = session

    def add_invoice(self, invoice_id, subscription_id=None,
                    billing_reason="subscription_cycle"):
        self.invoices[invoice_id] = {
            "id": invoice_id,
            "object": "invoice",
            "subscription": subscription_id,
            "billing_reason": billing_reason,
        }

    def add_subscription(self, subscription_id, customer_id, items,
                         status="active", period_start=1767225600,
                         period_end=1769904000):
        """items: list of (price_id, product_id, quantity)."""
        self.subscriptions[subscription_id] = {
            "id": subscription_id,
            "object": "subscription",
            "customer": customer_id,
            "status": status,
            "current_period_start": period_start,
            "current_period_end": period_end,
            "cancel_at_period_end": False,
            "items": {
                "data": [
                    {
                        "price": {"id": price_id, "product": product_id},
                        "quantity": quantity,
                    }
                    for price_id, product_id, quantity in items
                ]
            },
        }

    # --- SDK side effects ---

    def _retrieve_customer(self, customer_id, **kwargs):
        return self.customers[customer_id]

    def _list_sessions(self, payment_intent=None, subscription=None, limit=None, **kwargs):
        if payment_intent:
            session = self.sessions_by_payment_intent.get(payment_intent)
        else:
            session = self.sessions_by_subscription.get(subscription)
        return {"object": "list", "data": [session] if session else []}

    def _retrieve_invoice(self, invoice_id, **kwargs):
        return self.invoices[invoice_id]

    def _list_line_items(self, session_id, limit=None, **kwargs):
        return {"object": "list", "data": self.line_items.get(session_id, [])}

    def _retrieve_price(self, price_id, **kwargs):
        return self.prices[price_id]

    def _retrieve_subscription(self, subscription_id, **kwargs):
        return self.subscriptions[subscription_id]


_STRIPE = "credit_ledger.services.stripe_service.stripe"


@pytest.fixture
def fake_stripe():
    """Patch every Stripe query the handlers make with a FakeStripe."""
    fake = FakeStripe()
    with patch(f"{_STRIPE}.Customer.retrieve", side_effect=fake._retrieve_customer) as customer, \
            patch(f"{_STRIPE}.checkout.Session.list", side_effect=fake._list_sessions) as sessions, \
            patch(f"{_STRIPE}.checkout.Session.list_line_items", side_effect=fake._list_line_items) as line_items, \
            patch(f"{_STRIPE}.Price.retrieve", side_effect=fake._retrieve_price) as price, \
            patch(f"{_STRIPE}.Invoice.retrieve", side_effect=fake._retrieve_invoice) as invoice, \
            patch(f"{_STRIPE}.Subscription.retrieve", side_effect=fake._retrieve_subscription) as subscription:
        fake.mocks = {
            "customer": customer,
            "sessions": sessions,
            "line_items": line_items,
            "price": price,
            "invoice": invoice,
            "subscription": subscription,
        }
        yield fake


@pytest.fixture
def post_event(client):
    """POST an already-verified event to /stripe/webhooks."""

    def _post(event):
        with patch(f"{_STRIPE}.Webhook.construct_event", return_value=event):
            return client.post(
                "/stripe/webhooks",
                data="{}",
                content_type="application/json",
                headers={"Stripe-Signature": "valid_sig"},
            )

    return _post

