"""Plans blueprint — /api/plans

Public, read-only: the fee schedule and a price breakdown preview.
"""

from flask import Blueprint, jsonify, request

from settlement.errors import NotFoundError, ValidationError
from settlement.plans import get_all_plans, get_plan, serialize_plan
from settlement.services.breakdown_service import calculate_order_breakdown

plans_bp = Blueprint("plans", __name__, url_prefix="/api/plans")


@plans_bp.route("", methods=["GET"])
def list_plans():
    return jsonify({"plans": [serialize_plan(plan) for plan in get_all_plans()]})


@plans_bp.route("/<plan_id>/breakdown", methods=["GET"])
def breakdown(plan_id):
    """GET /api/plans/<plan_id>/breakdown?list_price_cents=14000"""
    plan = get_plan(plan_id)
    if plan is None:
        raise NotFoundError(f"Plan '{plan_id}' not found")

    list_price_cents = request.args.get("list_price_cents", type=int)
    if list_price_cents is None:
        raise ValidationError(
            "list_price_cents must be an integer", field="list_price_cents"
        )

    result = calculate_order_breakdown(list_price_cents, plan["id"])
    result["artist_take_home_pct"] = float(result["artist_take_home_pct"])
    return jsonify(result)
