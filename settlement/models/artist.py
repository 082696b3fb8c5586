"""Artist model.

An artist sells artworks and receives payouts through a Stripe Connect
account. Rows are created on first profile write and then upserted
field-by-field through store_service.upsert_artist (missing fields keep
their prior values).

platform_fee_bps is the legacy fee resolved at subscription time, so a
later fee-schedule change doesn't alter an active subscriber's economics.
"""

import uuid

from settlement.extensions import db


class Artist(db.Model):
    __tablename__ = "artists"

    id = db.Column(
        db.String(64), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), nullable=True)
    name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(50), nullable=False, default="artist")

    # --- Stripe identities ---
    payout_account_id = db.Column(
        db.String(255), nullable=True, index=True
    )  # Connect account, e.g. "acct_1Abc..."
    customer_id = db.Column(db.String(255), nullable=True)  # "cus_..."
    subscription_id = db.Column(db.String(255), nullable=True)  # "sub_..."

    # --- Subscription ---
    subscription_tier = db.Column(
        db.String(50), nullable=False, default="free"
    )  # free | starter | growth | pro
    subscription_status = db.Column(
        db.String(50), nullable=False, default="inactive"
    )  # inactive | active | past_due | canceled | ...
    platform_fee_bps = db.Column(db.Integer, nullable=True)

    # --- Connect onboarding signals (synced from Stripe) ---
    charges_enabled = db.Column(db.Boolean, nullable=False, default=False)
    payouts_enabled = db.Column(db.Boolean, nullable=False, default=False)
    details_submitted = db.Column(db.Boolean, nullable=False, default=False)
    onboarding_status = db.Column(
        db.String(50), nullable=False, default="not_started"
    )  # not_started | pending | restricted | complete
    connect_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    artworks = db.relationship("Artwork", back_populates="artist", lazy="dynamic")

    @property
    def is_payout_ready(self):
        return bool(self.payouts_enabled and self.charges_enabled)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "payout_account_id": self.payout_account_id,
            "customer_id": self.customer_id,
            "subscription_id": self.subscription_id,
            "subscription_tier": self.subscription_tier,
            "subscription_status": self.subscription_status,
            "platform_fee_bps": self.platform_fee_bps,
            "charges_enabled": self.charges_enabled,
            "payouts_enabled": self.payouts_enabled,
            "details_submitted": self.details_submitted,
            "onboarding_status": self.onboarding_status,
            "connect_synced_at": _iso(self.connect_synced_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Artist {self.id} ({self.subscription_tier})>"


def _iso(value):
    return value.isoformat() if value else None
