"""Webhooks blueprint — /stripe/webhooks

Stripe delivers at least once; this endpoint turns that into exactly-once
side effects. 200 is only returned once the event's effects are committed
(or it was already processed); 500 asks Stripe to redeliver.
"""

import logging

import stripe
from flask import Blueprint, jsonify, request

from settlement.services.stripe_gateway import get_gateway
from settlement.services.webhook_service import handle_webhook_event, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Verify, claim and apply one Stripe event.

    The raw body must reach signature verification untouched.
    """
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    gateway = get_gateway()
    try:
        event = verify_webhook_signature(gateway, request.get_data(as_text=True), sig_header)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": "Invalid signature"}), 400

    success, message = handle_webhook_event(event, gateway)
    if not success:
        logger.error(f"Webhook {event['id']} failed, Stripe will redeliver: {message}")
        return jsonify({"error": message}), 500

    return jsonify({"status": message}), 200
