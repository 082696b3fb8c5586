"""Orders blueprint — /api/orders/*

Route Map:
  GET  /api/orders/<order_id>                    — persisted order
  POST /api/orders/<order_id>/payouts/reconcile  — re-run payouts for one order
"""

from flask import Blueprint, jsonify

from settlement.services import store_service
from settlement.services.payout_service import reconcile_payouts
from settlement.services.stripe_gateway import get_gateway

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.route("/<order_id>", methods=["GET"])
def get_order(order_id):
    order = store_service.get_order_or_404(order_id)
    return jsonify(order.to_dict())


@orders_bp.route("/<order_id>/payouts/reconcile", methods=["POST"])
def reconcile_order(order_id):
    """Finish an order's payouts. Recorded transfers are never re-issued."""
    store_service.get_order_or_404(order_id)
    results = reconcile_payouts(get_gateway(), order_id=order_id)
    outcome = results[0]
    order = store_service.get_order_or_404(order_id)

    body = {"order": order.to_dict(), "result": outcome}
    if "error" in outcome:
        return jsonify(body), 409
    return jsonify(body)
