"""Checkout blueprint — /api/checkout, /api/artists/<id>/subscription-checkout

Route Map:
  POST /api/checkout                               — buy an artwork
  POST /api/artists/<artist_id>/subscription-checkout — subscribe to a tier

Both return a Stripe Checkout URL for the client to redirect to. Errors
are SettlementError subclasses rendered by the app-level handler.
"""

from flask import Blueprint, current_app, jsonify, request

from settlement.errors import ValidationError
from settlement.extensions import limiter
from settlement.services.checkout_service import (
    create_checkout_session,
    create_subscription_checkout,
)
from settlement.services.stripe_gateway import get_gateway

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


def _checkout_rate_limit():
    return current_app.config["CHECKOUT_RATE_LIMIT"]


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@checkout_bp.route("/checkout", methods=["POST"])
@limiter.limit(_checkout_rate_limit)
def checkout():
    """Create a pending order + Checkout Session.

    Body: { artwork_id, buyer_identity }
    Returns: { url, session_id, order_id }
    """
    data = _json_body()
    artwork_id = (data.get("artwork_id") or "").strip()
    if not artwork_id:
        raise ValidationError("artwork_id is required", field="artwork_id")

    result = create_checkout_session(
        get_gateway(),
        artwork_id=artwork_id,
        buyer_identity=data.get("buyer_identity"),
    )
    return jsonify(result), 201


@checkout_bp.route("/artists/<artist_id>/subscription-checkout", methods=["POST"])
@limiter.limit(_checkout_rate_limit)
def subscription_checkout(artist_id):
    """Start a subscription checkout for a paid tier.

    Body: { tier }
    """
    data = _json_body()
    result = create_subscription_checkout(get_gateway(), artist_id, data.get("tier"))
    return jsonify(result), 201
