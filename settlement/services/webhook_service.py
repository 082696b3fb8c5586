"""Webhook service — verified Stripe events to settlement side effects.

Every event goes through the idempotency guard first: the claim is an
insert-if-absent inside the same transaction as the handler's writes, so
the event is only marked processed when its side effects commit. A handler
failure rolls the claim back and the endpoint answers 500, which makes
Stripe redeliver.

The payment handler is the exception to "one commit at the end": the
payout orchestrator commits each transfer ID as soon as it is issued, so
once money has moved the claim is durable too. Anything left unpaid is
recorded on the order and finished by the reconciliation pass.
"""

import logging

from flask import current_app

from settlement.extensions import db
from settlement.plans import get_plan_from_price_id, get_platform_fee_bps
from settlement.services import store_service
from settlement.services.connect_service import apply_account_signals, signals_from_account
from settlement.services.idempotency_service import claim_event
from settlement.services.payout_service import log_payout_audit, settle_order
from settlement.services.stripe_gateway import extract_price_id

logger = logging.getLogger(__name__)

# Stripe subscription statuses that drop the artist back to the free tier
LAPSED_SUBSCRIPTION_STATUSES = ("canceled", "unpaid", "incomplete_expired")


def verify_webhook_signature(gateway, payload, sig_header):
    """Verify the Stripe-Signature header and construct the event.

    Raises stripe.SignatureVerificationError on an invalid signature.
    """
    return gateway.construct_event(payload, sig_header)


def handle_webhook_event(event, gateway):
    """Process a verified Stripe webhook event exactly once.

    Returns (success: bool, message: str).
    """
    event_id = event["id"]
    event_type = event["type"]

    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "customer.subscription.updated": _handle_subscription_updated,
        "customer.subscription.deleted": _handle_subscription_deleted,
        "account.updated": _handle_account_updated,
    }

    try:
        if not claim_event(event_id, event_type=event_type):
            return True, "already_processed"

        handler = handlers.get(event_type)
        if handler:
            handler(event, gateway)
        else:
            logger.info(f"Recorded unhandled webhook event {event_id} ({event_type})")

        db.session.commit()
    except Exception as e:
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        db.session.rollback()
        return False, str(e)

    return True, "processed"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event, gateway):
    session = event["data"]["object"]
    if session.get("mode") == "subscription":
        _handle_subscription_checkout(session, gateway)
    else:
        _handle_payment_checkout(session, gateway)


def _handle_payment_checkout(session, gateway):
    """Marketplace purchase paid: mark the order paid, sell the artwork, pay out."""
    metadata = session.get("metadata") or {}
    session_id = session.get("id")

    order = (
        store_service.find_order_by_id(metadata.get("order_id"))
        or store_service.find_order_by_checkout_session_id(session_id)
    )
    if order is None:
        logger.warning(f"checkout.session.completed for unknown order (session {session_id})")
        return

    if order.status == "checkout_failed":
        logger.error(f"Order {order.id} is checkout_failed but session {session_id} completed")
        return

    payment_status = session.get("payment_status", "paid")
    if payment_status not in ("paid", "no_payment_required"):
        logger.info(f"Session {session_id} completed with payment_status={payment_status}; waiting")
        return

    if order.status in ("pending", "paid") and not order.artist_transfer_id and not order.venue_transfer_id:
        payment_intent_id = session.get("payment_intent") or order.payment_intent_id
        charge_id = order.charge_id
        if not charge_id and payment_intent_id:
            charge_id = gateway.retrieve_charge_id(payment_intent_id)

        patch = {
            "status": "paid",
            "payment_intent_id": payment_intent_id,
            "charge_id": charge_id,
        }
        if not order.checkout_session_id and session_id:
            patch["checkout_session_id"] = session_id
        store_service.update_order(order.id, **patch)
        store_service.mark_artwork_sold(order.artwork_id)
        log_payout_audit(order.id, "order.paid", {
            "checkout_session_id": session_id,
            "payment_intent_id": payment_intent_id,
            "buyer_total_cents": order.buyer_total_cents,
        })
        logger.info(f"Order {order.id} paid ({order.buyer_total_cents} cents)")

    if not order.charge_id:
        store_service.update_order(
            order.id,
            payout_status="failed",
            payout_error="No charge recorded for this order",
        )
        logger.error(f"Order {order.id} paid without a resolvable charge; payouts deferred")
        return

    settle_order(gateway, order.id, charge_id=order.charge_id)


def _handle_subscription_checkout(session, gateway):
    """Artist subscribed: resolve the tier from the price and store it."""
    metadata = session.get("metadata") or {}
    artist_id = metadata.get("artist_id")
    subscription_id = session.get("subscription")

    if not artist_id or not subscription_id:
        logger.warning("Subscription checkout missing artist_id or subscription")
        return

    price_id = gateway.retrieve_subscription_price_id(subscription_id)
    tier = get_plan_from_price_id(
        price_id, current_app.config, fallback_tier=metadata.get("tier")
    )

    store_service.upsert_artist(
        artist_id,
        customer_id=session.get("customer"),
        subscription_id=subscription_id,
        subscription_tier=tier,
        subscription_status="active",
        platform_fee_bps=get_platform_fee_bps(tier),
    )
    logger.info(f"Artist {artist_id} subscribed to {tier} ({subscription_id})")


def _find_subscriber(sub):
    metadata = sub.get("metadata") or {}
    artist_id = metadata.get("artist_id")
    if artist_id:
        artist = store_service.get_artist(artist_id)
        if artist:
            return artist
    return store_service.find_artist_by_subscription(
        subscription_id=sub.get("id"), customer_id=sub.get("customer")
    )


def _handle_subscription_updated(event, gateway):
    """Plan change or status change (e.g. via the Customer Portal)."""
    sub = event["data"]["object"]
    artist = _find_subscriber(sub)
    if artist is None:
        logger.warning(f"Subscription {sub.get('id')} updated for unknown artist")
        return

    status = sub.get("status", "active")
    if status in LAPSED_SUBSCRIPTION_STATUSES:
        tier = "free"
    else:
        tier = get_plan_from_price_id(
            extract_price_id(sub), current_app.config,
            fallback_tier=artist.subscription_tier,
        )

    store_service.upsert_artist(
        artist.id,
        subscription_id=sub.get("id"),
        subscription_tier=tier,
        subscription_status=status,
        platform_fee_bps=get_platform_fee_bps(tier),
    )
    logger.info(f"Artist {artist.id} subscription {status} on {tier}")


def _handle_subscription_deleted(event, gateway):
    sub = event["data"]["object"]
    artist = _find_subscriber(sub)
    if artist is None:
        logger.warning(f"Subscription {sub.get('id')} deleted for unknown artist")
        return

    store_service.upsert_artist(
        artist.id,
        subscription_tier="free",
        subscription_status="canceled",
        platform_fee_bps=get_platform_fee_bps("free"),
    )
    logger.info(f"Artist {artist.id} subscription canceled; back on free")


def _handle_account_updated(event, gateway):
    """Connect account changed: copy its readiness signals onto the recipients."""
    signals = signals_from_account(event["data"]["object"])
    updated = apply_account_signals(signals)
    logger.info(f"Synced Connect account {signals['account_id']} onto {updated} recipient(s)")
