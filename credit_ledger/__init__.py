import os
import logging

import click
from flask import Flask, jsonify

from credit_ledger.config import config_by_name
from credit_ledger.extensions import db, migrate


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from credit_ledger import models  # noqa: F401

    # --- Register blueprints ---
    from credit_ledger.blueprints.webhooks import webhooks_bp

    app.register_blueprint(webhooks_bp)

    @app.route("/healthz")
    def healthz():
        return jsonify({"status": "ok"})

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("product-catalog")
    def product_catalog():
        """Print the configured Stripe product -> credits table."""
        from credit_ledger.services.product_catalog import ProductCatalog

        catalog = ProductCatalog.from_config(app.config)
        if not len(catalog):
            click.echo("No products configured.")
            return
        for product_id, credits in catalog.items():
            click.echo(f"  {product_id}: {credits} credits")

    @app.cli.command("customer-balance")
    @click.argument("stripe_customer_id")
    @click.option("--limit", default=10, help="Number of recent transactions to show")
    def customer_balance(stripe_customer_id, limit):
        """Show a customer's credit balance and recent transactions.

        Usage:
            flask customer-balance cus_123
        """
        from credit_ledger.models.transaction import Transaction
        from credit_ledger.services.customer_service import find_customer
        from credit_ledger.services.ledger_service import get_balance

        customer = find_customer(stripe_customer_id)
        if not customer:
            click.echo(f"No customer found for {stripe_customer_id}")
            raise SystemExit(1)

        click.echo(f"Customer:  {customer.email or '-'} ({customer.stripe_customer_id})")
        click.echo(f"Balance:   {get_balance(customer.id)} credits")

        transactions = (
            customer.transactions
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .all()
        )
        for txn in transactions:
            click.echo(
                f"  {txn.stripe_source_id}  {txn.product_type:<12} "
                f"{txn.credits_purchased:>6} credits  {txn.status}"
            )

    @app.cli.command("failed-events")
    @click.option("--limit", default=20, help="Number of events to show")
    def failed_events(limit):
        """List recent webhook events that failed processing."""
        from credit_ledger.services.audit_service import recent_failed_events

        events = recent_failed_events(limit=limit)
        if not events:
            click.echo("No failed events.")
            return
        for entry in events:
            click.echo(
                f"  {entry.stripe_event_id}  {entry.event_type}  "
                f"{entry.error_message or ''}"
            )

    @app.cli.command("grant-credits")
    @click.argument("stripe_customer_id")
    @click.argument("credits", type=int)
    @click.option("--reference", required=True,
                  help="Unique reference for this grant (re-running with the same reference is a no-op)")
    @click.option("--description", default=None, help="Ledger description")
    def grant_credits_command(stripe_customer_id, credits, reference, description):
        """Manually grant credits to a customer (support / goodwill).

        Goes through the same apply-once path as webhook grants.

        Usage:
            flask grant-credits cus_123 50 --reference ticket-4821
        """
        from credit_ledger.services.customer_service import find_customer
        from credit_ledger.services.ledger_service import (
            get_balance,
            grant_credits,
            record_transaction,
        )

        if credits <= 0:
            click.echo("ERROR: credits must be a positive integer.")
            raise SystemExit(1)

        customer = find_customer(stripe_customer_id)
        if not customer:
            click.echo(f"No customer found for {stripe_customer_id}")
            raise SystemExit(1)

        transaction, _ = record_transaction(
            customer_id=customer.id,
            stripe_source_id=f"manual:{reference}",
            product_type="credits",
            status="manual",
            credits_purchased=credits,
            stripe_metadata={"reference": reference},
        )
        grant = grant_credits(
            customer.id,
            transaction.credits_purchased,
            transaction.id,
            description or f"Manual grant: {transaction.credits_purchased} credits",
        )
        db.session.commit()

        if grant.applied:
            click.echo(f"Granted {transaction.credits_purchased} credits to {stripe_customer_id}")
        else:
            click.echo(f"Reference {reference} was already granted, nothing changed")
        click.echo(f"Balance: {get_balance(customer.id)} credits")
