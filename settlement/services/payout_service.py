"""Payout orchestrator — transfers to artist and venue Connect accounts.

Stripe has no multi-transfer transaction, so a settlement is a sequence of
independent transfers (artist first, then venue), each recorded the
moment it succeeds:

- a recipient that already has a recorded transfer ID is skipped, so
  re-running a settlement never pays anyone twice
- zero amounts and missing accounts are skipped (venues are optional)
- a failed transfer is reported on the order (payout_status /
  payout_error) and left for the reconciliation pass; it is not retried
  within the same invocation

settle_order() decides which accounts the orchestrator may use (payout
readiness), runs it, and derives the order's final status.
reconcile_payouts() is the explicit reconciliation pass.
"""

import logging

from settlement.errors import NotFoundError, UpstreamProcessorError, ValidationError
from settlement.extensions import db
from settlement.models.audit import AuditEvent
from settlement.models.order import Order
from settlement.services import store_service

logger = logging.getLogger(__name__)

RECIPIENTS = (
    # (recipient_type, transfer id column)
    ("artist", "artist_transfer_id"),
    ("venue", "venue_transfer_id"),
)


def log_payout_audit(order_id, action, metadata=None):
    """Append a payout audit event. Flushes; the caller commits."""
    db.session.add(AuditEvent(
        order_id=order_id,
        action=action,
        metadata_=metadata or {},
    ))
    db.session.flush()


def record_transfer_id(order_id, field, transfer_id, recipient_type, amount_cents):
    """Persist an issued transfer ID immediately (commits).

    Holding it in memory until the other recipient succeeds would let a
    retry of the whole settlement pay this recipient again.
    """
    store_service.update_order(order_id, **{field: transfer_id})
    log_payout_audit(order_id, "payout.transfer_created", {
        "recipient_type": recipient_type,
        "transfer_id": transfer_id,
        "amount_cents": amount_cents,
    })
    db.session.commit()


def create_payout_transfers(gateway, order_id, charge_id, artist_account_id,
                            venue_account_id, artist_amount_cents,
                            venue_amount_cents, lookup_existing=False):
    """Issue one transfer per recipient that still needs paying.

    Args:
        gateway: StripeGateway (or a fake with the same interface).
        order_id: Order to pay out; recorded transfer IDs are honored.
        charge_id: Source charge for the transfers.
        artist_account_id / venue_account_id: Destination accounts, or None
            to skip that recipient.
        artist_amount_cents / venue_amount_cents: From the order breakdown.
        lookup_existing: ask Stripe for an earlier transfer before issuing.

    New transfers use the order's current payout_attempt in their
    idempotency key.

    Returns:
        dict with artist_transfer_id, venue_transfer_id, issued (list of
        recipient types paid by this call), skipped ({recipient: reason})
        and errors ({recipient: message}).
    """
    order = store_service.get_order_or_404(order_id)
    if not charge_id:
        raise ValidationError("A source charge is required to create transfers", field="charge_id")

    plan = {
        "artist": (artist_account_id, artist_amount_cents),
        "venue": (venue_account_id, venue_amount_cents),
    }
    result = {
        "artist_transfer_id": order.artist_transfer_id,
        "venue_transfer_id": order.venue_transfer_id,
        "issued": [],
        "skipped": {},
        "errors": {},
    }

    for recipient_type, field in RECIPIENTS:
        account_id, amount_cents = plan[recipient_type]

        if getattr(order, field):
            result["skipped"][recipient_type] = "already_transferred"
            continue
        if not amount_cents or amount_cents <= 0:
            result["skipped"][recipient_type] = "zero_amount"
            continue
        if not account_id:
            result["skipped"][recipient_type] = "no_account"
            continue

        try:
            transfer_id = gateway.create_transfer(
                amount_cents=amount_cents,
                destination=account_id,
                source_charge_id=charge_id,
                order_id=order_id,
                recipient_type=recipient_type,
                currency=order.currency,
                lookup_existing=lookup_existing,
                attempt=order.payout_attempt,
            )
        except UpstreamProcessorError as e:
            logger.error(
                f"{recipient_type.capitalize()} transfer failed for order {order_id}: {e.message}"
            )
            result["errors"][recipient_type] = e.message
            continue

        record_transfer_id(order_id, field, transfer_id, recipient_type, amount_cents)
        result[field] = transfer_id
        result["issued"].append(recipient_type)
        logger.info(
            f"Transferred {amount_cents} to {recipient_type} {account_id} "
            f"for order {order_id} ({transfer_id})"
        )

    return result


def _ready_account(recipient):
    """(account_id, blocked) for an artist / venue row."""
    if recipient is None or not recipient.payout_account_id:
        return None, False
    if not recipient.is_payout_ready:
        return None, True
    return recipient.payout_account_id, False


def _derive_outcome(order, result, blocked, artist_missing_account):
    """Compute (status, payout_status, payout_error) after a payout run."""
    still_owed = []
    if order.artist_amount_cents > 0 and not result["artist_transfer_id"]:
        still_owed.append("artist")
    venue_payable = (
        order.venue_id
        and order.venue_amount_cents > 0
        and result["skipped"].get("venue") != "no_account"
    )
    if venue_payable and not result["venue_transfer_id"]:
        still_owed.append("venue")

    messages = [f"{r.capitalize()} transfer failed: {msg}" for r, msg in result["errors"].items()]
    for recipient_type in blocked:
        messages.append(f"{recipient_type.capitalize()} payouts disabled or onboarding incomplete")
    if artist_missing_account:
        messages.append("Artist has no payout account")
    payout_error = "; ".join(messages) or None

    any_transfer = bool(result["artist_transfer_id"] or result["venue_transfer_id"])

    if not still_owed:
        payout_status = "paid" if any_transfer else "not_required"
        return "settled", payout_status, None
    if result["errors"]:
        payout_status = "partial" if any_transfer else "failed"
    elif blocked:
        payout_status = "blocked_pending_onboarding"
    elif artist_missing_account:
        payout_status = "pending_connect"
    else:
        payout_status = "pending"

    status = "transfers_issued" if any_transfer else "paid"
    # A settled order reopened by reconciliation stays settled
    if Order.STATUSES.index(status) < Order.STATUSES.index(order.status):
        status = order.status
    return status, payout_status, payout_error


def settle_order(gateway, order_id, charge_id=None, lookup_existing=False):
    """Pay out a paid order and record the outcome (commits).

    Accounts that exist but aren't payout-ready are not handed to the
    orchestrator; the order is marked blocked_pending_onboarding and picked
    up by reconciliation once onboarding completes.

    Returns the orchestrator result plus status / payout_status /
    payout_error.
    """
    order = store_service.get_order_or_404(order_id)
    if order.status not in ("paid", "transfers_issued", "settled"):
        raise ValidationError(
            f"Order {order_id} is {order.status}; only paid orders can be settled",
            field="status",
        )

    charge_id = charge_id or order.charge_id
    if not charge_id and order.payment_intent_id:
        charge_id = gateway.retrieve_charge_id(order.payment_intent_id)
        if charge_id:
            store_service.update_order(order_id, charge_id=charge_id)
    if not charge_id:
        store_service.update_order(
            order_id,
            payout_status="failed",
            payout_error="No charge recorded for this order",
        )
        db.session.commit()
        raise ValidationError(f"Order {order_id} has no charge to transfer from")

    if lookup_existing:
        # Fresh transfer keys; find_transfer runs before each new transfer
        store_service.bump_payout_attempt(order_id)

    artist = store_service.get_artist(order.artist_id)
    venue = store_service.get_venue(order.venue_id)

    artist_account_id, artist_blocked = _ready_account(artist)
    venue_account_id, venue_blocked = _ready_account(venue)
    blocked = []
    if artist_blocked and order.artist_amount_cents > 0:
        blocked.append("artist")
    if venue_blocked and order.venue_amount_cents > 0:
        blocked.append("venue")

    result = create_payout_transfers(
        gateway,
        order_id=order_id,
        charge_id=charge_id,
        artist_account_id=artist_account_id,
        venue_account_id=venue_account_id,
        artist_amount_cents=order.artist_amount_cents,
        venue_amount_cents=order.venue_amount_cents,
        lookup_existing=lookup_existing,
    )

    # Blocked recipients are still owed; don't let them read as "no account"
    for recipient_type in blocked:
        result["skipped"][recipient_type] = "not_payout_ready"

    artist_missing_account = (
        "artist" not in blocked and result["skipped"].get("artist") == "no_account"
    )
    order = store_service.find_order_by_id(order_id)
    status, payout_status, payout_error = _derive_outcome(
        order, result, blocked, artist_missing_account
    )

    store_service.update_order(
        order_id,
        status=status,
        payout_status=payout_status,
        payout_error=payout_error,
    )
    if payout_error:
        log_payout_audit(order_id, "payout.incomplete", {
            "payout_status": payout_status,
            "error": payout_error,
        })
        logger.warning(f"Order {order_id} payout {payout_status}: {payout_error}")
    db.session.commit()

    result.update(status=status, payout_status=payout_status, payout_error=payout_error)
    return result


def reconcile_payouts(gateway, order_id=None, limit=None):
    """Reconciliation pass over paid orders with incomplete payouts.

    Recorded transfer IDs are skipped, and Stripe is asked for transfers
    that were issued but never recorded before anything new is issued.

    Returns a list of {order_id, ...settle result} dicts; a failing order
    is reported with an "error" key and doesn't stop the pass.
    """
    if order_id:
        order = store_service.find_order_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        orders = [order]
    else:
        orders = store_service.list_orders_needing_payout(limit=limit)

    results = []
    for order in orders:
        current_id = order.id
        try:
            outcome = settle_order(gateway, current_id, lookup_existing=True)
        except (UpstreamProcessorError, ValidationError) as e:
            db.session.rollback()
            logger.error(f"Reconciliation failed for order {current_id}: {e.message}")
            results.append({"order_id": current_id, "error": e.message})
            continue
        outcome["order_id"] = current_id
        results.append(outcome)

    logger.info(f"Reconciled {len(results)} order(s)")
    return results
