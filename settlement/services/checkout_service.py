"""Checkout service — marketplace purchase and artist subscription sessions.

A marketplace checkout snapshots the order economics before any money
moves: the pending Order row carries the full breakdown computed from the
artwork's list price and the artist's plan at that moment, and Stripe
charges exactly buyer_total_cents. The webhook later pays out from the
snapshot, never from a recomputation.
"""

import logging

from flask import current_app

from settlement.errors import (
    ConfigurationError,
    NotFoundError,
    UpstreamProcessorError,
    ValidationError,
)
from settlement.extensions import db
from settlement.plans import PAID_PLAN_IDS, require_plan
from settlement.services import store_service
from settlement.services.breakdown_service import calculate_order_breakdown

logger = logging.getLogger(__name__)


def checkout_idempotency_key(order_id):
    """One key per order: each purchase attempt gets its own order and session.

    A key shared across attempts would be replayed by Stripe with the
    earlier attempt's parameters (and rejected, since metadata.order_id
    differs).
    """
    return f"checkout-{order_id}"


def create_checkout_session(gateway, artwork_id, buyer_identity):
    """Create a pending order and a Stripe Checkout Session for an artwork.

    The processor is asked for {list_price_cents, plan_id, buyer_identity}
    expressed as a single charge of the buyer total.

    Returns:
        dict: {"url", "session_id", "order_id"}

    Raises:
        NotFoundError: artwork or artist doesn't exist.
        ValidationError: artwork already sold, or missing buyer identity.
        UpstreamProcessorError: Stripe refused the session (the order is
            kept, marked checkout_failed).
    """
    if not buyer_identity:
        raise ValidationError("buyer_identity is required", field="buyer_identity")

    artwork = store_service.get_artwork(artwork_id)
    if artwork is None:
        raise NotFoundError(f"Artwork {artwork_id} not found")
    if artwork.status != "active":
        raise ValidationError(f"Artwork {artwork_id} is no longer available")

    artist = store_service.get_artist(artwork.artist_id)
    if artist is None:
        raise NotFoundError(f"Artist {artwork.artist_id} not found")

    breakdown = calculate_order_breakdown(artwork.price_cents, artist.subscription_tier)

    order = store_service.create_order(
        artwork_id=artwork.id,
        artist_id=artist.id,
        venue_id=artwork.venue_id,
        buyer_identity=str(buyer_identity),
        status="pending",
        currency=artwork.currency,
        plan_id_at_purchase=breakdown["plan_id"],
        artist_take_home_pct=breakdown["artist_take_home_pct"],
        list_price_cents=breakdown["list_price_cents"],
        buyer_fee_cents=breakdown["buyer_fee_cents"],
        buyer_total_cents=breakdown["buyer_total_cents"],
        venue_amount_cents=breakdown["venue_amount_cents"],
        artist_amount_cents=breakdown["artist_amount_cents"],
        platform_net_cents=breakdown["platform_net_cents"],
        payout_status="pending",
    )
    # The order must exist before Stripe can reference it in metadata
    db.session.commit()

    app_base_url = current_app.config["APP_BASE_URL"]
    purchase_url = f"{app_base_url}/purchase-{artwork.id}"

    try:
        session = gateway.create_payment_session(
            amount_cents=breakdown["buyer_total_cents"],
            currency=artwork.currency,
            product_name=(artwork.title or "Artwork")[:200],
            image_url=artwork.image_url,
            metadata={
                "order_id": order.id,
                "artwork_id": artwork.id,
                "list_price_cents": str(breakdown["list_price_cents"]),
                "plan_id": breakdown["plan_id"],
                "buyer_identity": str(buyer_identity),
            },
            transfer_group=order.id,
            success_url=f"{purchase_url}?status=success",
            cancel_url=f"{purchase_url}?status=cancel",
            idempotency_key=checkout_idempotency_key(order.id),
        )
    except UpstreamProcessorError:
        store_service.update_order(order.id, status="checkout_failed")
        db.session.commit()
        raise

    store_service.update_order(order.id, checkout_session_id=session["id"])
    db.session.commit()
    logger.info(f"Checkout session {session['id']} created for order {order.id}")

    return {"url": session["url"], "session_id": session["id"], "order_id": order.id}


def create_subscription_checkout(gateway, artist_id, tier):
    """Start a subscription Checkout Session for an artist.

    The tier is validated strictly: unlike fee resolution, an unknown tier
    here is a client error, not a silent fallback to 'free'.

    Returns:
        dict: {"url", "session_id"}
    """
    plan = require_plan(tier, allowed=PAID_PLAN_IDS)

    artist = store_service.get_artist(artist_id)
    if artist is None:
        raise NotFoundError(f"Artist {artist_id} not found")

    price_id = current_app.config.get(f"STRIPE_PRICE_ID_{plan['id'].upper()}")
    if not price_id:
        raise ConfigurationError(f"No Stripe price configured for tier '{plan['id']}'")

    app_base_url = current_app.config["APP_BASE_URL"]
    session = gateway.create_subscription_session(
        price_id=price_id,
        metadata={"artist_id": artist.id, "tier": plan["id"]},
        success_url=f"{app_base_url}/artist/subscription?status=success",
        cancel_url=f"{app_base_url}/artist/subscription?status=cancel",
        customer_id=artist.customer_id,
        customer_email=artist.email,
    )
    logger.info(f"Subscription session {session['id']} created for artist {artist.id} ({plan['id']})")
    return {"url": session["url"], "session_id": session["id"]}
