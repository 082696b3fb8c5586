"""Settlement record store — artists, venues, artworks, orders.

All writes are per-row and transactional:
- new rows are created with an atomic insert-if-absent
  (INSERT ... ON CONFLICT DO NOTHING), so two concurrent creators of the
  same key can't both "win"
- read-modify-write goes through SELECT ... FOR UPDATE, so concurrent
  upserts of the same key serialize instead of losing an update (SQLite
  has no row locks; extensions.serialize_sqlite_writes covers it there)
- partial upserts resolve fields through patches.merge_patch()

Functions flush but do NOT commit — the caller commits. The one exception
is payout_service.record_transfer_id, which must be durable immediately.
"""

import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from settlement.errors import NotFoundError, ValidationError
from settlement.extensions import db
from settlement.models.artist import Artist
from settlement.models.artwork import Artwork
from settlement.models.order import Order
from settlement.models.venue import Venue
from settlement.patches import ARTIST_FIELDS, VENUE_FIELDS, merge_patch

logger = logging.getLogger(__name__)

# Orders that are paid but whose payouts still need work
OPEN_PAYOUT_STATUSES = (
    "pending",
    "partial",
    "failed",
    "blocked_pending_onboarding",
    "pending_connect",
)

ORDER_PATCHABLE_FIELDS = {
    "checkout_session_id",
    "status",
    "payment_intent_id",
    "charge_id",
    "artist_transfer_id",
    "venue_transfer_id",
    "payout_status",
    "payout_error",
}


# ──────────────────────────────────────────────
# Row primitives
# ──────────────────────────────────────────────

def insert_if_absent(model, values, index_elements):
    """Insert a row unless one already exists for the unique key.

    Single atomic statement on PostgreSQL and SQLite. Returns True if this
    call inserted the row, False if it was already there (or a concurrent
    transaction inserted it first).
    """
    dialect = db.engine.dialect.name

    if dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=index_elements
        )
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=index_elements
        )
    else:
        # No native upsert: lean on the unique constraint inside a savepoint
        try:
            with db.session.begin_nested():
                db.session.add(model(**values))
            return True
        except IntegrityError:
            return False

    result = db.session.execute(stmt)
    return result.rowcount == 1


def get_for_update(model, row_id):
    """Load a row with a row-level lock held until the transaction ends.

    populate_existing forces a re-read so an object already in the
    session's identity map can't hand back stale values.
    """
    stmt = (
        db.select(model)
        .filter_by(id=row_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def _current_values(row, fields):
    return {name: getattr(row, name) for name in fields}


def _upsert(model, row_id, patch, fields):
    if not row_id:
        raise ValidationError(f"{model.__name__} id is required", field="id")

    created = insert_if_absent(model, {"id": row_id}, ["id"])
    row = get_for_update(model, row_id)

    merged = merge_patch(_current_values(row, fields), patch, fields)
    for name, value in merged.items():
        setattr(row, name, value)
    db.session.flush()

    if created:
        logger.info(f"Created {model.__name__} {row_id}")
    return row


# ──────────────────────────────────────────────
# Artists
# ──────────────────────────────────────────────

def upsert_artist(artist_id, **patch):
    """Create or partially update an artist. Unsupplied fields keep their values."""
    return _upsert(Artist, artist_id, patch, ARTIST_FIELDS)


def get_artist(artist_id):
    if not artist_id:
        return None
    return db.session.get(Artist, artist_id)


def find_artists_by_payout_account(account_id):
    return Artist.query.filter_by(payout_account_id=account_id).all()


def find_artist_by_subscription(subscription_id=None, customer_id=None):
    """Artist holding a Stripe subscription, falling back to the customer ID."""
    if subscription_id:
        artist = Artist.query.filter_by(subscription_id=subscription_id).first()
        if artist:
            return artist
    if customer_id:
        return Artist.query.filter_by(customer_id=customer_id).first()
    return None


# ──────────────────────────────────────────────
# Venues
# ──────────────────────────────────────────────

def upsert_venue(venue_id, **patch):
    """Create or partially update a venue. default_fee_bps defaults to 1000."""
    return _upsert(Venue, venue_id, patch, VENUE_FIELDS)


def get_venue(venue_id):
    if not venue_id:
        return None
    return db.session.get(Venue, venue_id)


def list_venues():
    return Venue.query.order_by(Venue.created_at).all()


def find_venues_by_payout_account(account_id):
    return Venue.query.filter_by(payout_account_id=account_id).all()


# ──────────────────────────────────────────────
# Artworks
# ──────────────────────────────────────────────

def create_artwork(artist_id, price_cents, artwork_id=None, venue_id=None,
                   title=None, currency="usd", image_url=None):
    """Create an artwork listing (status 'active').

    Raises:
        NotFoundError: artist or venue doesn't exist.
        ValidationError: bad price, or artwork_id already taken.
    """
    if isinstance(price_cents, bool) or not isinstance(price_cents, int) or price_cents < 0:
        raise ValidationError(
            "price_cents must be a non-negative integer", field="price_cents"
        )
    if get_artist(artist_id) is None:
        raise NotFoundError(f"Artist {artist_id} not found")
    if venue_id and get_venue(venue_id) is None:
        raise NotFoundError(f"Venue {venue_id} not found")

    values = {
        "artist_id": artist_id,
        "venue_id": venue_id,
        "title": title,
        "price_cents": price_cents,
        "currency": (currency or "usd").lower(),
        "image_url": image_url,
        "status": "active",
    }
    if artwork_id:
        values["id"] = artwork_id
        if not insert_if_absent(Artwork, values, ["id"]):
            raise ValidationError(f"Artwork {artwork_id} already exists")
        return db.session.get(Artwork, artwork_id)

    artwork = Artwork(**values)
    db.session.add(artwork)
    db.session.flush()
    return artwork


def get_artwork(artwork_id):
    if not artwork_id:
        return None
    return db.session.get(Artwork, artwork_id)


def list_artworks_by_artist(artist_id):
    return (
        Artwork.query.filter_by(artist_id=artist_id)
        .order_by(Artwork.created_at)
        .all()
    )


def mark_artwork_sold(artwork_id):
    """Move an artwork to 'sold'. Idempotent; returns None if it doesn't exist."""
    artwork = get_for_update(Artwork, artwork_id)
    if artwork is None:
        return None
    if artwork.status != "sold":
        artwork.status = "sold"
        db.session.flush()
    return artwork


# ──────────────────────────────────────────────
# Orders
# ──────────────────────────────────────────────

def create_order(**fields):
    """Insert a new order row. checkout_session_id is unique when set."""
    order = Order(**fields)
    db.session.add(order)
    db.session.flush()
    return order


def _check_status_transition(current, new):
    if new == current:
        return
    if current in Order.TERMINAL_STATUSES:
        raise ValidationError(
            f"Order is {current}; it can't move to {new}", field="status"
        )
    if new in Order.TERMINAL_STATUSES:
        if current != "pending":
            raise ValidationError(
                f"Only pending orders can become {new} (order is {current})",
                field="status",
            )
        return
    if new not in Order.STATUSES:
        raise ValidationError(f"Unknown order status '{new}'", field="status")
    if Order.STATUSES.index(new) < Order.STATUSES.index(current):
        raise ValidationError(
            f"Order status can't move backwards from {current} to {new}",
            field="status",
        )


def update_order(order_id, **patch):
    """Apply a partial patch to an order under a row lock.

    Raises:
        NotFoundError: no such order.
        ValidationError: unknown field, status regression, or an attempt to
            re-point checkout_session_id.
    """
    unknown = sorted(set(patch) - ORDER_PATCHABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown order field(s): {', '.join(unknown)}", fields=unknown
        )

    order = get_for_update(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")

    if "status" in patch:
        _check_status_transition(order.status, patch["status"])

    session_id = patch.get("checkout_session_id")
    if order.checkout_session_id and session_id and session_id != order.checkout_session_id:
        raise ValidationError(
            "checkout_session_id is already set for this order",
            field="checkout_session_id",
        )

    for name, value in patch.items():
        setattr(order, name, value)
    db.session.flush()
    return order


def bump_payout_attempt(order_id):
    """Increment an order's payout attempt under a row lock. Returns the new value."""
    order = get_for_update(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    order.payout_attempt = (order.payout_attempt or 0) + 1
    db.session.flush()
    return order.payout_attempt


def find_order_by_id(order_id):
    if not order_id:
        return None
    return db.session.get(Order, order_id)


def find_order_by_checkout_session_id(session_id):
    if not session_id:
        return None
    return Order.query.filter_by(checkout_session_id=session_id).first()


def get_order_or_404(order_id):
    order = find_order_by_id(order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders_needing_payout(limit=None):
    """Paid orders whose payouts are incomplete, oldest first."""
    query = (
        Order.query
        .filter(Order.status.in_(("paid", "transfers_issued")))
        .filter(Order.payout_status.in_(OPEN_PAYOUT_STATUSES))
        .order_by(Order.created_at)
    )
    if limit:
        query = query.limit(limit)
    return query.all()
