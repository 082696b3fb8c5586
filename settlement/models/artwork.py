"""Artwork model.

status only moves active -> sold, never back.
"""

import uuid

from settlement.extensions import db


class Artwork(db.Model):
    __tablename__ = "artworks"

    STATUSES = ["active", "sold"]

    id = db.Column(
        db.String(64), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    artist_id = db.Column(
        db.String(64), db.ForeignKey("artists.id"), nullable=False, index=True
    )
    venue_id = db.Column(
        db.String(64), db.ForeignKey("venues.id"), nullable=True
    )
    title = db.Column(db.String(255), nullable=True)
    price_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    image_url = db.Column(db.String(1000), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="active"
    )  # active | sold

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    artist = db.relationship("Artist", back_populates="artworks")
    venue = db.relationship("Venue")

    def __repr__(self):
        return f"<Artwork {self.id} ({self.status})>"
