"""Tests for the JSON API blueprints and CLI commands.

Covers:
- POST /api/checkout (order snapshot, Stripe params, failures)
- POST /api/artists/<id>/subscription-checkout (strict tier validation)
- GET /api/orders/<id>, POST /api/orders/<id>/payouts/reconcile
- Connect account / onboarding link / status routes
- GET /api/plans, GET /api/plans/<id>/breakdown
- Error rendering (SettlementError, 404, 405)
- flask reconcile-payouts / sync-connect-accounts / list-plans
"""

import json
from unittest.mock import patch

import stripe

from settlement.errors import UpstreamProcessorError
from settlement.extensions import db
from settlement.models.order import Order
from settlement.services import store_service
from settlement.services.checkout_service import checkout_idempotency_key


class TestCheckout:
    """Tests for POST /api/checkout."""

    @patch("settlement.services.stripe_gateway.stripe.checkout.Session.create")
    def test_creates_order_and_session(self, mock_session, client, seed_data):
        mock_session.return_value = {"id": "cs_test_new", "url": "https://checkout.stripe.com/c/pay/cs_test_new"}

        resp = client.post("/api/checkout", json={
            "artwork_id": "art-1",
            "buyer_identity": "buyer@example.com",
        })

        assert resp.status_code == 201
        data = json.loads(resp.data)
        assert data["session_id"] == "cs_test_new"
        assert data["url"].startswith("https://checkout.stripe.com/")

        order = store_service.find_order_by_id(data["order_id"])
        assert order.status == "pending"
        assert order.checkout_session_id == "cs_test_new"
        assert order.plan_id_at_purchase == "pro"
        assert order.buyer_total_cents == 14630
        assert order.artist_amount_cents == 11900
        assert order.venue_amount_cents == 2100

        kwargs = mock_session.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 14630
        assert kwargs["payment_intent_data"] == {"transfer_group": order.id}
        assert kwargs["metadata"]["order_id"] == order.id
        assert kwargs["metadata"]["list_price_cents"] == "14000"
        assert kwargs["idempotency_key"] == checkout_idempotency_key(order.id)

    @patch("settlement.services.stripe_gateway.stripe.checkout.Session.create")
    def test_repeat_checkout_by_same_buyer_gets_new_session(self, mock_session, client, seed_data):
        """Cancel-and-retry: Stripe rejects a reused key sent with different params."""
        seen = {}

        def create_session(**kwargs):
            key = kwargs["idempotency_key"]
            params = {k: v for k, v in kwargs.items() if k not in ("idempotency_key", "api_key")}
            if key in seen and seen[key] != params:
                raise stripe.IdempotencyError(
                    "Keys for idempotent requests can only be used with the same parameters"
                )
            seen[key] = params
            session_id = f"cs_test_{len(seen)}"
            return {"id": session_id, "url": f"https://checkout.stripe.com/c/pay/{session_id}"}

        mock_session.side_effect = create_session
        body = {"artwork_id": "art-1", "buyer_identity": "buyer@example.com"}

        first = client.post("/api/checkout", json=body)
        second = client.post("/api/checkout", json=body)

        assert first.status_code == 201
        assert second.status_code == 201
        first_data, second_data = json.loads(first.data), json.loads(second.data)
        assert first_data["order_id"] != second_data["order_id"]
        assert first_data["session_id"] != second_data["session_id"]
        assert Order.query.filter_by(status="checkout_failed").count() == 0
        assert Order.query.filter_by(status="pending").count() == 2

    @patch("settlement.services.stripe_gateway.stripe.checkout.Session.create")
    def test_stripe_failure_marks_checkout_failed(self, mock_session, client, seed_data):
        mock_session.side_effect = stripe.InvalidRequestError("Amount too large", param="amount")

        resp = client.post("/api/checkout", json={
            "artwork_id": "art-1",
            "buyer_identity": "buyer@example.com",
        })

        assert resp.status_code == 502
        assert json.loads(resp.data)["code"] == "upstream_processor_error"
        order = Order.query.one()
        assert order.status == "checkout_failed"

    def test_sold_artwork_rejected(self, client, seed_data):
        store_service.mark_artwork_sold("art-1")
        db.session.commit()

        resp = client.post("/api/checkout", json={"artwork_id": "art-1", "buyer_identity": "b"})

        assert resp.status_code == 400
        assert Order.query.count() == 0

    def test_unknown_artwork(self, client, seed_data):
        resp = client.post("/api/checkout", json={"artwork_id": "art-nope", "buyer_identity": "b"})
        assert resp.status_code == 404
        assert json.loads(resp.data)["code"] == "not_found"

    def test_missing_fields(self, client, seed_data):
        assert client.post("/api/checkout", json={"buyer_identity": "b"}).status_code == 400
        assert client.post("/api/checkout", json={"artwork_id": "art-1"}).status_code == 400
        assert client.post("/api/checkout", data="not json").status_code == 400


class TestSubscriptionCheckout:
    """Tests for POST /api/artists/<id>/subscription-checkout."""

    @patch("settlement.services.stripe_gateway.stripe.checkout.Session.create")
    def test_paid_tier(self, mock_session, client, seed_data):
        mock_session.return_value = {"id": "cs_sub", "url": "https://checkout.stripe.com/c/pay/cs_sub"}

        resp = client.post(f"/api/artists/{seed_data['artist_id']}/subscription-checkout",
                           json={"tier": "growth"})

        assert resp.status_code == 201
        kwargs = mock_session.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_growth_test", "quantity": 1}]
        assert kwargs["metadata"] == {"artist_id": "artist-1", "tier": "growth"}
        assert kwargs["customer_email"] == "ada@example.com"

    def test_invalid_tier(self, client, seed_data):
        for tier in ("free", "platinum", None):
            resp = client.post(f"/api/artists/{seed_data['artist_id']}/subscription-checkout",
                               json={"tier": tier})
            assert resp.status_code == 400
            assert json.loads(resp.data)["details"]["field"] == "tier"

    def test_missing_price_is_configuration_error(self, app, client, seed_data):
        with patch.dict(app.config, {"STRIPE_PRICE_ID_PRO": None}):
            resp = client.post(f"/api/artists/{seed_data['artist_id']}/subscription-checkout",
                               json={"tier": "pro"})
        assert resp.status_code == 500
        assert json.loads(resp.data)["code"] == "configuration_error"


class TestOrders:
    """Tests for the orders blueprint."""

    def test_get_order(self, client, make_order):
        order_id = make_order()
        resp = client.get(f"/api/orders/{order_id}")
        assert resp.status_code == 200
        data = json.loads(resp.data)
        assert data["id"] == order_id
        assert data["artist_take_home_pct"] == 0.85
        assert data["list_price_cents"] == 14000

    def test_get_missing_order(self, client):
        resp = client.get("/api/orders/nope")
        assert resp.status_code == 404

    @patch("settlement.blueprints.orders.get_gateway")
    def test_reconcile(self, mock_get_gateway, client, gateway, make_order):
        mock_get_gateway.return_value = gateway
        order_id = make_order(status="transfers_issued", artist_transfer_id="tr_a",
                              payout_status="partial")

        resp = client.post(f"/api/orders/{order_id}/payouts/reconcile")

        assert resp.status_code == 200
        data = json.loads(resp.data)
        assert data["order"]["status"] == "settled"
        assert data["result"]["issued"] == ["venue"]

    @patch("settlement.blueprints.orders.get_gateway")
    def test_reconcile_without_charge(self, mock_get_gateway, client, gateway, make_order):
        mock_get_gateway.return_value = gateway
        order_id = make_order(charge_id=None)

        resp = client.post(f"/api/orders/{order_id}/payouts/reconcile")

        assert resp.status_code == 409
        assert json.loads(resp.data)["order"]["payout_status"] == "failed"


class TestConnectRoutes:
    """Tests for the connect blueprint."""

    @patch("settlement.blueprints.connect.get_gateway")
    def test_create_account(self, mock_get_gateway, client, gateway, seed_data):
        mock_get_gateway.return_value = gateway
        gateway.create_account.return_value = "acct_v2"
        store_service.upsert_venue("venue-2", name="Pop-up")
        db.session.commit()

        resp = client.post("/api/connect/venue/venue-2/account", json={"email": "v@example.com"})

        assert resp.status_code == 201
        assert json.loads(resp.data) == {"account_id": "acct_v2", "is_new": True}
        assert store_service.get_venue("venue-2").payout_account_id == "acct_v2"

    @patch("settlement.blueprints.connect.get_gateway")
    def test_existing_account(self, mock_get_gateway, client, gateway, seed_data):
        mock_get_gateway.return_value = gateway
        resp = client.post(f"/api/connect/artist/{seed_data['artist_id']}/account")
        assert resp.status_code == 200
        gateway.create_account.assert_not_called()

    @patch("settlement.blueprints.connect.get_gateway")
    def test_onboarding_link(self, mock_get_gateway, client, gateway, seed_data):
        mock_get_gateway.return_value = gateway
        gateway.create_account_link.return_value = "https://connect.stripe.com/setup/e/xyz"

        resp = client.post(f"/api/connect/artist/{seed_data['artist_id']}/onboarding-link")

        assert json.loads(resp.data)["url"] == "https://connect.stripe.com/setup/e/xyz"
        kwargs = gateway.create_account_link.call_args.kwargs
        assert kwargs["return_url"].endswith("/artist/payouts?onboarding=complete")

    @patch("settlement.blueprints.connect.get_gateway")
    def test_status(self, mock_get_gateway, client, gateway, seed_data):
        mock_get_gateway.return_value = gateway
        gateway.retrieve_account.return_value = {
            "id": "acct_artist_1",
            "charges_enabled": False,
            "payouts_enabled": False,
            "details_submitted": False,
            "requirements": {"currently_due": ["individual.verification.document"]},
        }

        resp = client.get(f"/api/connect/artist/{seed_data['artist_id']}/status")

        data = json.loads(resp.data)
        assert data["onboarding_status"] == "pending"
        assert data["payout_ready"] is False
        assert store_service.get_artist(seed_data["artist_id"]).onboarding_status == "pending"

    def test_bad_recipient_type(self, client):
        resp = client.get("/api/connect/buyer/x/status")
        assert resp.status_code == 400

    @patch("settlement.blueprints.connect.get_gateway")
    def test_upstream_error_is_502(self, mock_get_gateway, client, gateway, seed_data):
        mock_get_gateway.return_value = gateway
        gateway.retrieve_account.side_effect = UpstreamProcessorError("Stripe account retrieval failed")

        resp = client.get(f"/api/connect/artist/{seed_data['artist_id']}/status")

        assert resp.status_code == 502


class TestPlans:
    """Tests for the plans blueprint."""

    def test_list_plans(self, client):
        data = json.loads(client.get("/api/plans").data)
        assert [p["id"] for p in data["plans"]] == ["free", "starter", "growth", "pro"]

    def test_breakdown(self, client):
        resp = client.get("/api/plans/pro/breakdown?list_price_cents=14000")
        data = json.loads(resp.data)
        assert data["buyer_total_cents"] == 14630
        assert data["artist_take_home_pct"] == 0.85

    def test_breakdown_bad_input(self, client):
        assert client.get("/api/plans/pro/breakdown").status_code == 400
        assert client.get("/api/plans/pro/breakdown?list_price_cents=-5").status_code == 400
        assert client.get("/api/plans/bogus/breakdown?list_price_cents=100").status_code == 404


class TestErrorHandlers:
    """Tests for JSON error rendering."""

    def test_unknown_route(self, client):
        resp = client.get("/api/nowhere")
        assert resp.status_code == 404
        assert json.loads(resp.data)["code"] == "not_found"

    def test_wrong_method(self, client):
        resp = client.get("/api/checkout")
        assert resp.status_code == 405


class TestCli:
    """Tests for flask CLI commands."""

    @patch("settlement.services.stripe_gateway.StripeGateway.from_config")
    def test_reconcile_payouts(self, mock_from_config, app, gateway, make_order):
        mock_from_config.return_value = gateway
        order_id = make_order(payout_status="failed")

        result = app.test_cli_runner().invoke(args=["reconcile-payouts"])

        assert result.exit_code == 0
        assert f"{order_id}: settled / paid" in result.output
        assert "Reconciled 1 order(s)." in result.output

    @patch("settlement.services.stripe_gateway.StripeGateway.from_config")
    def test_reconcile_nothing(self, mock_from_config, app, gateway):
        mock_from_config.return_value = gateway
        result = app.test_cli_runner().invoke(args=["reconcile-payouts"])
        assert "No orders need payouts." in result.output

    @patch("settlement.services.stripe_gateway.StripeGateway.from_config")
    def test_sync_connect_accounts(self, mock_from_config, app, gateway, seed_data):
        mock_from_config.return_value = gateway
        gateway.retrieve_account.side_effect = lambda account_id: {
            "id": account_id,
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
        }

        result = app.test_cli_runner().invoke(args=["sync-connect-accounts"])

        assert result.exit_code == 0
        assert "acct_artist_1: complete" in result.output
        assert "Synced 2 account(s)." in result.output

    def test_list_plans(self, app):
        result = app.test_cli_runner().invoke(args=["list-plans"])
        assert result.exit_code == 0
        assert "pro" in result.output
        assert "85%" in result.output
