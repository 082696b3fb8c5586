import os
import logging

import click
from flask import Flask, jsonify

from settlement.config import config_by_name
from settlement.errors import ConfigurationError, SettlementError
from settlement.extensions import db, migrate, limiter, serialize_sqlite_writes


def create_app(config_name=None, config_overrides=None):
    """Application factory.

    config_overrides is applied on top of the config class (tests use it
    to point at a file-backed database).
    """

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if config_overrides:
        app.config.update(config_overrides)

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except ConfigurationError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from settlement import models  # noqa: F401

        # In-memory SQLite is a single shared connection; nothing to serialize
        url = db.engine.url
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            serialize_sqlite_writes(db.engine)

    # --- Register blueprints ---
    from settlement.blueprints.webhooks import webhooks_bp
    from settlement.blueprints.checkout import checkout_bp
    from settlement.blueprints.orders import orders_bp
    from settlement.blueprints.connect import connect_bp
    from settlement.blueprints.plans import plans_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(connect_bp)
    app.register_blueprint(plans_bp)

    # --- Error handlers ---
    @app.errorhandler(SettlementError)
    def settlement_error(e):
        if e.status_code >= 500:
            app.logger.error(f"{e.code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found", "code": "not_found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "code": "method_not_allowed"}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error", "code": "server_error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)
    # The stripe SDK logs every request at INFO
    logging.getLogger("stripe").setLevel(logging.WARNING)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("reconcile-payouts")
    @click.option("--order-id", default=None, help="Reconcile a single order.")
    @click.option("--limit", default=None, type=int, help="Max orders to process.")
    def reconcile_payouts_command(order_id, limit):
        """Finish incomplete payouts for paid orders.

        Recorded transfers are never re-issued; Stripe is checked for
        transfers that were issued but not recorded.

        Usage:
            flask reconcile-payouts
            flask reconcile-payouts --order-id <uuid>
        """
        from settlement.services.payout_service import reconcile_payouts
        from settlement.services.stripe_gateway import get_gateway

        results = reconcile_payouts(get_gateway(), order_id=order_id, limit=limit)

        if not results:
            click.echo("No orders need payouts.")
            return
        for result in results:
            if "error" in result:
                click.echo(f"  {result['order_id']}: ERROR {result['error']}")
            else:
                click.echo(
                    f"  {result['order_id']}: {result['status']} / {result['payout_status']}"
                    + (f" ({result['payout_error']})" if result["payout_error"] else "")
                )
        click.echo(f"Reconciled {len(results)} order(s).")

    @app.cli.command("sync-connect-accounts")
    def sync_connect_accounts_command():
        """Re-sync onboarding flags for every artist and venue with a Connect account.

        Usage:
            flask sync-connect-accounts
        """
        from settlement.errors import UpstreamProcessorError
        from settlement.models.artist import Artist
        from settlement.models.venue import Venue
        from settlement.services.connect_service import sync_connect_account
        from settlement.services.stripe_gateway import get_gateway

        gateway = get_gateway()
        account_ids = set()
        for model in (Artist, Venue):
            rows = db.session.execute(
                db.select(model.payout_account_id).where(model.payout_account_id.isnot(None))
            ).scalars()
            account_ids.update(rows)

        for account_id in sorted(account_ids):
            try:
                status = sync_connect_account(gateway, account_id)
            except UpstreamProcessorError as e:
                db.session.rollback()
                click.echo(f"  {account_id}: ERROR {e.message}")
                continue
            db.session.commit()
            click.echo(
                f"  {account_id}: {status['onboarding_status']}"
                f" (payout_ready={status['payout_ready']})"
            )
        click.echo(f"Synced {len(account_ids)} account(s).")

    @app.cli.command("list-plans")
    def list_plans_command():
        """Print the fee schedule.

        Usage:
            flask list-plans
        """
        from settlement.plans import VENUE_COMMISSION_PCT, get_all_plans, get_platform_fee_bps

        click.echo("")
        click.echo("=" * 60)
        click.echo(f"{'Plan':<10}{'Monthly':>10}{'Artist':>10}{'Venue':>10}{'Fee bps':>10}")
        click.echo("=" * 60)
        for plan in get_all_plans():
            click.echo(
                f"{plan['id']:<10}"
                f"{'$' + format(plan['monthly_price_cents'] / 100, '.2f'):>10}"
                f"{format(plan['artist_take_home_pct'], '.0%'):>10}"
                f"{format(VENUE_COMMISSION_PCT, '.0%'):>10}"
                f"{get_platform_fee_bps(plan['id']):>10}"
            )
        click.echo("=" * 60)
