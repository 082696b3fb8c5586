"""Order breakdown calculator.

Pure function from (list price in cents, plan id) to every monetary line
item of a sale. All math is Decimal on integer cents; each amount is
rounded independently from the list price, half away from zero; the artist
share is capped so artist + venue never exceeds the list price.
"""

from decimal import Decimal, ROUND_HALF_UP

from settlement.errors import ValidationError
from settlement.plans import (
    BUYER_FEE_PCT,
    VENUE_COMMISSION_PCT,
    get_artist_take_home_pct,
    resolve_plan_id,
)


def round_cents(amount):
    """Round a Decimal amount of cents to an int, half away from zero."""
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _share(list_price_cents, rate):
    return round_cents(Decimal(list_price_cents) * rate)


def calculate_order_breakdown(list_price_cents, plan_id):
    """Compute buyer fee, buyer total, venue / artist amounts and platform net.

    Args:
        list_price_cents: Artwork list price in cents (int >= 0).
        plan_id: Artist's subscription tier. Unknown ids resolve to 'free'.

    Returns:
        dict with integer cent amounts plus the resolved plan id and rate.

    Raises:
        ValidationError: list_price_cents is not a non-negative integer.
    """
    if isinstance(list_price_cents, bool) or not isinstance(list_price_cents, int):
        raise ValidationError(
            "list_price_cents must be an integer number of cents",
            field="list_price_cents",
        )
    if list_price_cents < 0:
        raise ValidationError(
            "list_price_cents must be >= 0", field="list_price_cents"
        )

    resolved_plan = resolve_plan_id(plan_id)
    take_home_pct = get_artist_take_home_pct(resolved_plan)

    buyer_fee = _share(list_price_cents, BUYER_FEE_PCT)
    venue_amount = _share(list_price_cents, VENUE_COMMISSION_PCT)
    artist_amount = _share(list_price_cents, take_home_pct)
    # Two independent half-up roundings can overshoot the list price by a
    # cent when the rates sum to 100%; platform net must stay >= 0.
    artist_amount = min(artist_amount, list_price_cents - venue_amount)

    return {
        "list_price_cents": list_price_cents,
        "plan_id": resolved_plan,
        "artist_take_home_pct": take_home_pct,
        "buyer_fee_cents": buyer_fee,
        "buyer_total_cents": list_price_cents + buyer_fee,
        "venue_amount_cents": venue_amount,
        "artist_amount_cents": artist_amount,
        "platform_net_cents": list_price_cents - venue_amount - artist_amount,
    }
