"""Partial-update ("patch") rules for upserted entities.

Each entity declares its patchable fields with a default and an optional
coercion. merge_patch() resolves every field in one documented order:

    1. the patch value, if supplied, not None, and accepted by the coercion
    2. the existing record's value, if not None
    3. the field default

So a partial upsert never nulls out a field the caller didn't send.
Kept free of database access so it can be tested on plain dicts.
"""

import math
from collections import namedtuple

from settlement.errors import ValidationError

FieldRule = namedtuple("FieldRule", ["default", "coerce"])

# Sentinel returned by coercions to mean "ignore this patch value"
REJECT = object()


def _non_negative_int(value):
    """Accept whole numbers (or numeric strings) >= 0; anything else is ignored."""
    if isinstance(value, bool):
        return REJECT
    try:
        number = float(value)
    except (TypeError, ValueError):
        return REJECT
    if not math.isfinite(number) or number < 0 or number != int(number):
        return REJECT
    return int(number)


def _bool(value):
    return bool(value)


def rule(default=None, coerce=None):
    return FieldRule(default, coerce)


ARTIST_FIELDS = {
    "email": rule(),
    "name": rule(),
    "role": rule("artist"),
    "payout_account_id": rule(),
    "customer_id": rule(),
    "subscription_id": rule(),
    "subscription_tier": rule("free"),
    "subscription_status": rule("inactive"),
    "platform_fee_bps": rule(None, _non_negative_int),
    "charges_enabled": rule(False, _bool),
    "payouts_enabled": rule(False, _bool),
    "details_submitted": rule(False, _bool),
    "onboarding_status": rule("not_started"),
    "connect_synced_at": rule(),
}

VENUE_FIELDS = {
    "email": rule(),
    "name": rule(),
    "payout_account_id": rule(),
    "default_fee_bps": rule(1000, _non_negative_int),
    "charges_enabled": rule(False, _bool),
    "payouts_enabled": rule(False, _bool),
    "details_submitted": rule(False, _bool),
    "onboarding_status": rule("not_started"),
    "connect_synced_at": rule(),
}


def merge_patch(existing, patch, fields):
    """Resolve a full field set from an existing record and a partial patch.

    Args:
        existing: dict of the current values (or None for a new record).
        patch: dict of caller-supplied values. None means "not supplied".
        fields: one of the *_FIELDS rule tables.

    Returns:
        dict with a value for every field in the table.

    Raises:
        ValidationError: patch names a field the table doesn't know.
    """
    existing = existing or {}
    unknown = sorted(set(patch) - set(fields))
    if unknown:
        raise ValidationError(
            f"Unknown field(s): {', '.join(unknown)}", fields=unknown
        )

    merged = {}
    for name, field_rule in fields.items():
        value = patch.get(name)
        if value is not None and field_rule.coerce is not None:
            value = field_rule.coerce(value)
            if value is REJECT:
                value = None
        if value is None:
            value = existing.get(name)
        if value is None:
            value = field_rule.default
        merged[name] = value
    return merged
