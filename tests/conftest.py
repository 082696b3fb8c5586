"""Shared test fixtures for the settlement engine test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake Stripe keys)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: a payout-ready Pro artist, a payout-ready venue, an artwork
- gateway: MagicMock standing in for StripeGateway
"""

from unittest.mock import MagicMock

import pytest

from settlement import create_app
from settlement.extensions import db as _db
from settlement.models.artist import Artist
from settlement.models.artwork import Artwork
from settlement.models.order import Order
from settlement.models.venue import Venue
from settlement.services.breakdown_service import calculate_order_breakdown
from settlement.services.stripe_gateway import StripeGateway


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
def seed_data(app, db_session):
    """Seed a Pro artist and a venue (both payout-ready) plus a $140 artwork.

    Returns a dict of plain IDs so tests can use them after commits expire
    the ORM objects.
    """
    artist = Artist(
        id="artist-1",
        email="ada@example.com",
        name="Ada Painter",
        payout_account_id="acct_artist_1",
        subscription_tier="pro",
        subscription_status="active",
        charges_enabled=True,
        payouts_enabled=True,
        details_submitted=True,
        onboarding_status="complete",
    )
    venue = Venue(
        id="venue-1",
        email="hello@cafe.example.com",
        name="Corner Cafe",
        payout_account_id="acct_venue_1",
        charges_enabled=True,
        payouts_enabled=True,
        details_submitted=True,
        onboarding_status="complete",
    )
    _db.session.add_all([artist, venue])
    _db.session.flush()

    artwork = Artwork(
        id="art-1",
        artist_id=artist.id,
        venue_id=venue.id,
        title="Harbor at Dusk",
        price_cents=14000,
        currency="usd",
    )
    _db.session.add(artwork)
    _db.session.commit()

    return {
        "artist_id": "artist-1",
        "artist_account_id": "acct_artist_1",
        "venue_id": "venue-1",
        "venue_account_id": "acct_venue_1",
        "artwork_id": "art-1",
    }


@pytest.fixture
def gateway():
    """Fake gateway: transfers succeed with predictable IDs."""
    fake = MagicMock(spec=StripeGateway)
    fake.create_transfer.side_effect = (
        lambda **kwargs: f"tr_{kwargs['recipient_type']}_{kwargs['order_id'][:8]}"
    )
    fake.retrieve_charge_id.return_value = "ch_test_1"
    fake.find_transfer.return_value = None
    return fake


def _make_order(seed_data, status="paid", charge_id="ch_test_1", list_price_cents=14000,
                plan_id="pro", venue_id="__seed__", **overrides):
    """Insert an order with a real breakdown snapshot and return its ID."""
    breakdown = calculate_order_breakdown(list_price_cents, plan_id)
    fields = dict(
        artwork_id=seed_data["artwork_id"],
        artist_id=seed_data["artist_id"],
        venue_id=seed_data["venue_id"] if venue_id == "__seed__" else venue_id,
        buyer_identity="buyer@example.com",
        status=status,
        currency="usd",
        plan_id_at_purchase=breakdown["plan_id"],
        artist_take_home_pct=breakdown["artist_take_home_pct"],
        list_price_cents=breakdown["list_price_cents"],
        buyer_fee_cents=breakdown["buyer_fee_cents"],
        buyer_total_cents=breakdown["buyer_total_cents"],
        venue_amount_cents=breakdown["venue_amount_cents"],
        artist_amount_cents=breakdown["artist_amount_cents"],
        platform_net_cents=breakdown["platform_net_cents"],
        charge_id=charge_id,
        payout_status="pending",
    )
    fields.update(overrides)
    order = Order(**fields)
    _db.session.add(order)
    _db.session.commit()
    return order.id


@pytest.fixture
def make_order(seed_data):
    """Factory: make_order(status="paid", ...) -> order ID."""
    return lambda **kwargs: _make_order(seed_data, **kwargs)
