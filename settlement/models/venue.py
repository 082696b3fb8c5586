"""Venue model.

A venue hosts artworks and earns a commission on each sale. Venues are
optional on an order; a venue without a Connect account is simply skipped
at payout time.
"""

import uuid

from settlement.extensions import db
from settlement.models.artist import _iso


class Venue(db.Model):
    __tablename__ = "venues"

    DEFAULT_FEE_BPS = 1000  # 10%

    id = db.Column(
        db.String(64), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), nullable=True)
    name = db.Column(db.String(255), nullable=True)
    payout_account_id = db.Column(db.String(255), nullable=True, index=True)
    default_fee_bps = db.Column(
        db.Integer, nullable=False, default=DEFAULT_FEE_BPS
    )

    # --- Connect onboarding signals (synced from Stripe) ---
    charges_enabled = db.Column(db.Boolean, nullable=False, default=False)
    payouts_enabled = db.Column(db.Boolean, nullable=False, default=False)
    details_submitted = db.Column(db.Boolean, nullable=False, default=False)
    onboarding_status = db.Column(
        db.String(50), nullable=False, default="not_started"
    )
    connect_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_payout_ready(self):
        return bool(self.payouts_enabled and self.charges_enabled)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "payout_account_id": self.payout_account_id,
            "default_fee_bps": self.default_fee_bps,
            "charges_enabled": self.charges_enabled,
            "payouts_enabled": self.payouts_enabled,
            "details_submitted": self.details_submitted,
            "onboarding_status": self.onboarding_status,
            "connect_synced_at": _iso(self.connect_synced_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Venue {self.id}>"
