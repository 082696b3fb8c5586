"""Webhook event model (idempotency table).

Every Stripe event is recorded by its event ID before its side effects are
applied. The unique constraint on event_id is the only concurrency-control
primitive for webhook delivery: claims are made with an atomic
insert-if-absent, never a read followed by a write. Rows are write-once.
"""

import uuid

from settlement.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=True
    )  # e.g. "checkout.session.completed"
    note = db.Column(db.String(500), nullable=True)
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<WebhookEvent {self.event_id} ({self.event_type})>"
