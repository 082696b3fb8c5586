"""Subscription plans — single source of truth for tier economics.

KEY DEFINITIONS:
- artist_take_home_pct: share of LIST PRICE the artist takes home (0-1)
- VENUE_COMMISSION_PCT: share of LIST PRICE the venue receives (15%)
- BUYER_FEE_PCT: share of LIST PRICE the buyer pays on top as a fee (4.5%)
- monthly_price_cents: monthly subscription cost in cents

Example ($140 artwork, Pro plan):
    List price          $140.00
    Buyer fee (4.5%)      $6.30  -> buyer pays $146.30
    Venue (15%)          $21.00
    Artist (85%)        $119.00
    Platform net          $0.00

Rates are Decimals so the breakdown calculator never touches floats.
The catalog is validated at import time: a plan whose take-home plus the
venue commission exceeds 100% would make the platform net negative.
"""

from decimal import Decimal, ROUND_HALF_UP

from settlement.errors import ConfigurationError, ValidationError

VENUE_COMMISSION_PCT = Decimal("0.15")
BUYER_FEE_PCT = Decimal("0.045")

DEFAULT_PLAN_ID = "free"

SUBSCRIPTION_PLANS = {
    "free": {
        "id": "free",
        "name": "Free",
        "monthly_price_cents": 0,
        "artist_take_home_pct": Decimal("0.60"),
        "features": ["1 active display", "1 artwork listing", "Basic QR generation"],
        "active_displays": 1,
        "artwork_listings": 1,
    },
    "starter": {
        "id": "starter",
        "name": "Starter",
        "monthly_price_cents": 900,
        "artist_take_home_pct": Decimal("0.80"),
        "features": ["4 active displays", "Up to 10 artworks", "Priority support"],
        "active_displays": 4,
        "artwork_listings": 10,
    },
    "growth": {
        "id": "growth",
        "name": "Growth",
        "monthly_price_cents": 1900,
        "artist_take_home_pct": Decimal("0.83"),
        "features": ["10 active displays", "Up to 30 artworks", "Visibility boost"],
        "active_displays": 10,
        "artwork_listings": 30,
    },
    "pro": {
        "id": "pro",
        "name": "Pro",
        "monthly_price_cents": 3900,
        "artist_take_home_pct": Decimal("0.85"),
        "features": ["Unlimited displays", "Unlimited artworks", "Free protection"],
        "active_displays": None,  # unlimited
        "artwork_listings": None,  # unlimited
    },
}

# Tiers an artist can pay for (free is never sold through checkout)
PAID_PLAN_IDS = ("starter", "growth", "pro")


def validate_plans(plans, venue_commission_pct=VENUE_COMMISSION_PCT):
    """Raise ConfigurationError if any plan definition breaks the split invariants."""
    if DEFAULT_PLAN_ID not in plans:
        raise ConfigurationError(f"Plan catalog is missing the '{DEFAULT_PLAN_ID}' plan")

    for plan_id, plan in plans.items():
        pct = plan["artist_take_home_pct"]
        if not isinstance(pct, Decimal):
            raise ConfigurationError(
                f"Plan '{plan_id}' take-home rate must be a Decimal, got {type(pct).__name__}"
            )
        if pct < 0 or pct > 1:
            raise ConfigurationError(
                f"Plan '{plan_id}' take-home rate {pct} is outside [0, 1]"
            )
        if pct + venue_commission_pct > 1:
            raise ConfigurationError(
                f"Plan '{plan_id}' take-home {pct} plus venue commission "
                f"{venue_commission_pct} exceeds 100% of list price"
            )


validate_plans(SUBSCRIPTION_PLANS)


def _normalize(plan_id):
    if plan_id is None:
        return ""
    return str(plan_id).strip().lower()


def get_plan(plan_id):
    """Return the plan dict for plan_id, or None if it isn't in the catalog."""
    return SUBSCRIPTION_PLANS.get(_normalize(plan_id))


def get_all_plans():
    return list(SUBSCRIPTION_PLANS.values())


def resolve_plan_id(plan_id):
    """Normalize plan_id, falling back to 'free' for anything unrecognized."""
    normalized = _normalize(plan_id)
    if normalized in SUBSCRIPTION_PLANS:
        return normalized
    return DEFAULT_PLAN_ID


def require_plan(plan_id, allowed=None):
    """Strict lookup for request validation.

    Raises ValidationError instead of falling back to 'free'.
    """
    normalized = _normalize(plan_id)
    choices = allowed or tuple(SUBSCRIPTION_PLANS)
    if normalized not in choices:
        raise ValidationError(
            f"Invalid plan tier '{plan_id}'. Must be one of: {', '.join(choices)}",
            field="tier",
        )
    return SUBSCRIPTION_PLANS[normalized]


def get_artist_take_home_pct(plan_id):
    """Artist take-home rate for plan_id. Never raises; unknown ids get free's rate."""
    return SUBSCRIPTION_PLANS[resolve_plan_id(plan_id)]["artist_take_home_pct"]


def get_platform_fee_bps(plan_id):
    """Legacy "platform fee" in basis points, kept for backward-compatible storage.

    (1 - take_home - venue_commission) * 10000. Never show this to users.
    """
    platform_share = 1 - get_artist_take_home_pct(plan_id) - VENUE_COMMISSION_PCT
    return int((platform_share * 10000).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_plan_from_price_id(price_id, app_config, fallback_tier=None):
    """Map a Stripe subscription price ID to a tier.

    The price ID is authoritative (it reflects plan changes made in the
    Stripe Customer Portal); the tier from session metadata is only a
    fallback. Returns 'free' when neither resolves.
    """
    price_map = {
        app_config.get("STRIPE_PRICE_ID_STARTER"): "starter",
        app_config.get("STRIPE_PRICE_ID_GROWTH"): "growth",
        app_config.get("STRIPE_PRICE_ID_PRO"): "pro",
    }
    price_map.pop(None, None)

    if price_id and price_id in price_map:
        return price_map[price_id]
    return resolve_plan_id(fallback_tier)


def serialize_plan(plan):
    """JSON-friendly copy of a plan (Decimals as floats, fee bps included)."""
    data = dict(plan)
    data["artist_take_home_pct"] = float(plan["artist_take_home_pct"])
    data["venue_commission_pct"] = float(VENUE_COMMISSION_PCT)
    data["buyer_fee_pct"] = float(BUYER_FEE_PCT)
    return data
