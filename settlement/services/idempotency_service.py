"""Webhook idempotency guard.

Stripe delivers events at least once, and a retry can race a slow first
attempt. claim_event() is the only safe gate: a single insert-if-absent
keyed by event_id. A separate was_processed() check followed by a write
leaves a window where two deliveries both see "not processed" and both
pay out.

The claim joins the caller's transaction. It becomes durable when the
caller commits its side effects, and a rollback releases it so Stripe's
redelivery is processed again. On PostgreSQL a concurrent claimer blocks
on the unique index until the first transaction finishes, then sees the
conflict (committed) or wins (rolled back).
"""

import logging

from settlement.errors import ValidationError
from settlement.extensions import db
from settlement.models.webhook_event import WebhookEvent
from settlement.services.store_service import insert_if_absent

logger = logging.getLogger(__name__)


def was_processed(event_id):
    """Read-only check. Never use this to decide whether to apply side effects."""
    return db.session.execute(
        db.select(WebhookEvent.id).filter_by(event_id=event_id)
    ).first() is not None


def claim_event(event_id, event_type=None, note=None):
    """Atomically check-and-mark an event.

    Returns:
        True if this call is the first to see event_id (caller must process
        it and commit), False if it was already processed.
    """
    if not event_id:
        raise ValidationError("event_id is required", field="event_id")

    first = insert_if_absent(
        WebhookEvent,
        {"event_id": event_id, "event_type": event_type, "note": note},
        ["event_id"],
    )
    if not first:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
    return first


def mark_processed(event_id, event_type=None, note=None):
    """Record event_id as processed. A no-op if it's already recorded."""
    claim_event(event_id, event_type=event_type, note=note)
