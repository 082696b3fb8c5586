"""Tests for the settlement record store, patch rules and idempotency guard.

Covers:
- merge_patch default-resolution order (patch > existing > default)
- Artist / venue upsert preservation of unsupplied fields
- Order status transitions (forward only, checkout_failed only from pending)
- checkout_session_id lookups and immutability
- Orders needing payout
- Webhook event claims (first wins, duplicates rejected)
- Concurrent claims and upserts against a file-backed database
"""

import threading

import pytest

from settlement import create_app
from settlement.errors import NotFoundError, ValidationError
from settlement.extensions import db
from settlement.models.artist import Artist
from settlement.models.webhook_event import WebhookEvent
from settlement.patches import ARTIST_FIELDS, VENUE_FIELDS, merge_patch
from settlement.services import store_service
from settlement.services.idempotency_service import claim_event, mark_processed, was_processed


class TestMergePatch:
    """Tests for the pure patch-merge function."""

    def test_defaults_for_new_record(self):
        merged = merge_patch(None, {"email": "a@b.com"}, ARTIST_FIELDS)
        assert merged["email"] == "a@b.com"
        assert merged["subscription_tier"] == "free"
        assert merged["role"] == "artist"
        assert merged["charges_enabled"] is False

    def test_none_in_patch_keeps_existing(self):
        existing = {"email": "old@b.com", "name": "Old"}
        merged = merge_patch(existing, {"email": None, "name": "New"}, ARTIST_FIELDS)
        assert merged["email"] == "old@b.com"
        assert merged["name"] == "New"

    def test_false_is_a_real_value(self):
        merged = merge_patch({"payouts_enabled": True}, {"payouts_enabled": False}, ARTIST_FIELDS)
        assert merged["payouts_enabled"] is False

    def test_bad_fee_bps_falls_through(self):
        """Negative / fractional / non-numeric bps are ignored, not stored."""
        for bad in (-5, 12.5, "abc", True, float("nan")):
            merged = merge_patch({"default_fee_bps": 800}, {"default_fee_bps": bad}, VENUE_FIELDS)
            assert merged["default_fee_bps"] == 800

    def test_numeric_string_fee_bps_accepted(self):
        merged = merge_patch(None, {"default_fee_bps": "1200"}, VENUE_FIELDS)
        assert merged["default_fee_bps"] == 1200

    def test_venue_fee_defaults_to_1000(self):
        assert merge_patch(None, {}, VENUE_FIELDS)["default_fee_bps"] == 1000

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            merge_patch(None, {"favorite_color": "blue"}, ARTIST_FIELDS)


class TestUpserts:
    """Tests for artist / venue upserts."""

    def test_partial_upsert_preserves_other_fields(self, seed_data):
        """Upserting only subscription_status leaves email, name, account alone."""
        store_service.upsert_artist(seed_data["artist_id"], subscription_status="past_due")
        db.session.commit()

        artist = store_service.get_artist(seed_data["artist_id"])
        assert artist.subscription_status == "past_due"
        assert artist.email == "ada@example.com"
        assert artist.name == "Ada Painter"
        assert artist.payout_account_id == "acct_artist_1"
        assert artist.subscription_tier == "pro"

    def test_upsert_creates_missing_artist(self):
        artist = store_service.upsert_artist("artist-new", email="new@example.com")
        db.session.commit()
        assert artist.email == "new@example.com"
        assert artist.subscription_tier == "free"
        assert artist.onboarding_status == "not_started"

    def test_upsert_venue_defaults(self):
        venue = store_service.upsert_venue("venue-new", name="Gallery")
        db.session.commit()
        assert venue.default_fee_bps == 1000
        assert venue.is_payout_ready is False

    def test_upsert_requires_id(self):
        with pytest.raises(ValidationError):
            store_service.upsert_artist("", email="x@example.com")

    def test_find_by_payout_account(self, seed_data):
        artists = store_service.find_artists_by_payout_account("acct_artist_1")
        assert [a.id for a in artists] == [seed_data["artist_id"]]
        assert store_service.find_venues_by_payout_account("acct_nobody") == []


class TestArtworks:
    """Tests for artwork listings."""

    def test_create_artwork(self, seed_data):
        artwork = store_service.create_artwork(seed_data["artist_id"], 5000, title="Sketch")
        db.session.commit()
        assert artwork.status == "active"
        assert artwork in store_service.list_artworks_by_artist(seed_data["artist_id"])

    def test_create_artwork_unknown_artist(self, seed_data):
        with pytest.raises(NotFoundError):
            store_service.create_artwork("artist-missing", 5000)

    def test_create_artwork_duplicate_id(self, seed_data):
        with pytest.raises(ValidationError):
            store_service.create_artwork(seed_data["artist_id"], 5000, artwork_id="art-1")

    def test_mark_sold_is_idempotent(self, seed_data):
        assert store_service.mark_artwork_sold("art-1").status == "sold"
        assert store_service.mark_artwork_sold("art-1").status == "sold"
        assert store_service.mark_artwork_sold("art-missing") is None


class TestOrders:
    """Tests for order persistence."""

    def test_status_moves_forward(self, make_order):
        order_id = make_order(status="pending", charge_id=None)
        store_service.update_order(order_id, status="paid")
        store_service.update_order(order_id, status="settled")
        db.session.commit()
        assert store_service.find_order_by_id(order_id).status == "settled"

    def test_status_cannot_move_backwards(self, make_order):
        order_id = make_order(status="transfers_issued")
        with pytest.raises(ValidationError):
            store_service.update_order(order_id, status="paid")

    def test_checkout_failed_only_from_pending(self, make_order):
        paid_id = make_order(status="paid")
        with pytest.raises(ValidationError):
            store_service.update_order(paid_id, status="checkout_failed")

        pending_id = make_order(status="pending", charge_id=None)
        store_service.update_order(pending_id, status="checkout_failed")
        with pytest.raises(ValidationError):
            store_service.update_order(pending_id, status="paid")

    def test_session_id_lookup_and_immutability(self, make_order):
        order_id = make_order(status="pending", charge_id=None)
        store_service.update_order(order_id, checkout_session_id="cs_test_1")
        db.session.commit()

        assert store_service.find_order_by_checkout_session_id("cs_test_1").id == order_id
        with pytest.raises(ValidationError):
            store_service.update_order(order_id, checkout_session_id="cs_test_2")

    def test_unknown_field_rejected(self, make_order):
        order_id = make_order()
        with pytest.raises(ValidationError):
            store_service.update_order(order_id, list_price_cents=1)

    def test_missing_order(self):
        with pytest.raises(NotFoundError):
            store_service.update_order("nope", status="paid")
        with pytest.raises(NotFoundError):
            store_service.get_order_or_404("nope")

    def test_orders_needing_payout(self, make_order):
        open_id = make_order(status="paid", payout_status="failed")
        make_order(status="settled", payout_status="paid")
        make_order(status="pending", charge_id=None)

        ids = [o.id for o in store_service.list_orders_needing_payout()]
        assert ids == [open_id]

    def test_to_dict_shape(self, make_order):
        order = store_service.find_order_by_id(make_order())
        data = order.to_dict()
        assert data["artist_take_home_pct"] == 0.85
        assert isinstance(data["artist_amount_cents"], int)
        assert data["created_at"] is None or "T" in data["created_at"]


class TestIdempotencyGuard:
    """Tests for webhook event claims."""

    def test_first_claim_wins(self):
        assert claim_event("evt_1", event_type="account.updated") is True
        assert claim_event("evt_1", event_type="account.updated") is False
        db.session.commit()
        assert was_processed("evt_1") is True
        assert WebhookEvent.query.filter_by(event_id="evt_1").count() == 1

    def test_existing_marker_blocks_claim(self):
        db.session.add(WebhookEvent(event_id="evt_seen", event_type="x"))
        db.session.commit()
        assert claim_event("evt_seen") is False

    def test_rolled_back_claim_is_released(self):
        assert claim_event("evt_retry") is True
        db.session.rollback()
        assert was_processed("evt_retry") is False
        assert claim_event("evt_retry") is True

    def test_mark_processed_is_idempotent(self):
        mark_processed("evt_2")
        mark_processed("evt_2")
        db.session.commit()
        assert WebhookEvent.query.filter_by(event_id="evt_2").count() == 1

    def test_empty_event_id_rejected(self):
        with pytest.raises(ValidationError):
            claim_event("")


@pytest.fixture
def file_app(tmp_path):
    """A second app on a file-backed SQLite database, so threads get real connections."""
    app = create_app(
        "testing",
        config_overrides={"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}"},
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _race(app, calls):
    """Run each call in its own thread and app context, released together.

    Returns (results, errors); each call's work is committed in its thread.
    """
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)
    errors = []

    def worker(index, call):
        with app.app_context():
            try:
                barrier.wait(timeout=10)
                results[index] = call()
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                errors.append(e)

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


class TestConcurrentWrites:
    """Two writers racing on the same key."""

    def test_concurrent_claims_have_one_winner(self, file_app):
        calls = [lambda: claim_event("evt_race", event_type="checkout.session.completed")] * 2

        results, errors = _race(file_app, calls)

        assert errors == []
        assert sorted(results) == [False, True]
        with file_app.app_context():
            assert WebhookEvent.query.filter_by(event_id="evt_race").count() == 1

    def test_concurrent_upserts_keep_both_patches(self, file_app):
        def set_name():
            store_service.upsert_artist("artist-race", name="Ada Painter")

        def set_email():
            store_service.upsert_artist("artist-race", email="ada@example.com")

        _, errors = _race(file_app, [set_name, set_email])

        assert errors == []
        with file_app.app_context():
            artist = db.session.get(Artist, "artist-race")
            assert artist.name == "Ada Painter"
            assert artist.email == "ada@example.com"
            assert Artist.query.count() == 1
