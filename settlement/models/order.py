"""Order model.

One row per marketplace purchase attempt. The monetary breakdown is
snapshotted at checkout time (all amounts in integer cents) so later plan
changes never alter what an order pays out.

Lifecycle (never deleted, never moves backwards):
    pending -> paid -> transfers_issued -> settled
    pending -> checkout_failed   (Stripe refused to create the session)

payout_status is the per-order payout outcome the reconciliation pass
works from; artist_transfer_id / venue_transfer_id are written the moment
each transfer succeeds.
"""

import uuid

from settlement.extensions import db
from settlement.models.artist import _iso


class Order(db.Model):
    __tablename__ = "orders"

    # -- Status order: an update may only move forward in this list --
    STATUSES = ["pending", "paid", "transfers_issued", "settled"]
    TERMINAL_STATUSES = ["checkout_failed"]

    PAYOUT_STATUSES = [
        "pending",
        "paid",
        "partial",
        "failed",
        "blocked_pending_onboarding",
        "pending_connect",
        "not_required",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    checkout_session_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # "cs_..." — set once the Stripe session exists
    artwork_id = db.Column(
        db.String(64), db.ForeignKey("artworks.id"), nullable=False
    )
    artist_id = db.Column(
        db.String(64), db.ForeignKey("artists.id"), nullable=False
    )
    venue_id = db.Column(
        db.String(64), db.ForeignKey("venues.id"), nullable=True
    )
    buyer_identity = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=False, default="pending")
    currency = db.Column(db.String(3), nullable=False, default="usd")

    # --- Economics snapshot (cents) ---
    plan_id_at_purchase = db.Column(db.String(50), nullable=False)
    artist_take_home_pct = db.Column(db.Numeric(5, 4), nullable=False)
    list_price_cents = db.Column(db.Integer, nullable=False)
    buyer_fee_cents = db.Column(db.Integer, nullable=False)
    buyer_total_cents = db.Column(db.Integer, nullable=False)
    venue_amount_cents = db.Column(db.Integer, nullable=False)
    artist_amount_cents = db.Column(db.Integer, nullable=False)
    platform_net_cents = db.Column(db.Integer, nullable=False)

    # --- Payment + payout ---
    payment_intent_id = db.Column(db.String(255), nullable=True)
    charge_id = db.Column(db.String(255), nullable=True)
    artist_transfer_id = db.Column(db.String(255), nullable=True)
    venue_transfer_id = db.Column(db.String(255), nullable=True)
    payout_status = db.Column(db.String(50), nullable=False, default="pending")
    payout_error = db.Column(db.Text, nullable=True)
    # Bumped by each reconciliation pass; part of the transfer idempotency key
    payout_attempt = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    artwork = db.relationship("Artwork")
    artist = db.relationship("Artist")
    venue = db.relationship("Venue")

    def to_dict(self):
        """Persisted order shape: cents as ints, rates as 0-1, ISO-8601 times."""
        return {
            "id": self.id,
            "checkout_session_id": self.checkout_session_id,
            "artwork_id": self.artwork_id,
            "artist_id": self.artist_id,
            "venue_id": self.venue_id,
            "buyer_identity": self.buyer_identity,
            "status": self.status,
            "currency": self.currency,
            "plan_id_at_purchase": self.plan_id_at_purchase,
            "artist_take_home_pct": float(self.artist_take_home_pct),
            "list_price_cents": self.list_price_cents,
            "buyer_fee_cents": self.buyer_fee_cents,
            "buyer_total_cents": self.buyer_total_cents,
            "venue_amount_cents": self.venue_amount_cents,
            "artist_amount_cents": self.artist_amount_cents,
            "platform_net_cents": self.platform_net_cents,
            "payment_intent_id": self.payment_intent_id,
            "charge_id": self.charge_id,
            "artist_transfer_id": self.artist_transfer_id,
            "venue_transfer_id": self.venue_transfer_id,
            "payout_status": self.payout_status,
            "payout_error": self.payout_error,
            "payout_attempt": self.payout_attempt,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Order {self.id} ({self.status}/{self.payout_status})>"
