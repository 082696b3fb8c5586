"""Connect blueprint — /api/connect/<recipient_type>/<recipient_id>/*

Stripe Connect onboarding for artists and venues.

Route Map:
  POST /api/connect/<artist|venue>/<id>/account          — get or create account
  POST /api/connect/<artist|venue>/<id>/onboarding-link  — one-time onboarding URL
  GET  /api/connect/<artist|venue>/<id>/status           — sync + derived status
"""

from flask import Blueprint, current_app, jsonify, request

from settlement.extensions import db
from settlement.services.connect_service import (
    create_onboarding_link,
    get_or_create_connect_account,
    get_recipient_status,
)
from settlement.services.stripe_gateway import get_gateway

connect_bp = Blueprint("connect", __name__, url_prefix="/api/connect")


@connect_bp.route("/<recipient_type>/<recipient_id>/account", methods=["POST"])
def create_account(recipient_type, recipient_id):
    """Body (optional): { email, name }. Returns { account_id, is_new }."""
    data = request.get_json(silent=True) or {}
    result = get_or_create_connect_account(
        get_gateway(),
        recipient_type,
        recipient_id,
        email=data.get("email"),
        name=data.get("name"),
    )
    db.session.commit()
    return jsonify(result), 201 if result["is_new"] else 200


@connect_bp.route("/<recipient_type>/<recipient_id>/onboarding-link", methods=["POST"])
def onboarding_link(recipient_type, recipient_id):
    """Returns { url } for Stripe-hosted onboarding."""
    base_url = current_app.config["APP_BASE_URL"]
    return_path = f"{base_url}/{recipient_type}/payouts"
    url = create_onboarding_link(
        get_gateway(),
        recipient_type,
        recipient_id,
        return_url=f"{return_path}?onboarding=complete",
        refresh_url=f"{return_path}?onboarding=refresh",
    )
    return jsonify({"url": url})


@connect_bp.route("/<recipient_type>/<recipient_id>/status", methods=["GET"])
def status(recipient_type, recipient_id):
    result = get_recipient_status(get_gateway(), recipient_type, recipient_id)
    db.session.commit()
    return jsonify(result)
