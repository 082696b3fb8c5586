"""Stripe Connect account service — onboarding and payout readiness.

Onboarding status is derived, never stored as a state machine: it is a
pure function of the account's four signals (details_submitted,
charges_enabled, payouts_enabled, requirements.currently_due). The
precedence lives in ONBOARDING_STATUS_RULES; the first matching rule wins.

The derived flags are copied onto every artist / venue row holding the
account so the payout path can gate on them without calling Stripe.
"""

import logging
from datetime import datetime, timezone

from settlement.errors import NotFoundError, ValidationError
from settlement.extensions import db
from settlement.models.audit import AuditEvent
from settlement.services import store_service

logger = logging.getLogger(__name__)

RECIPIENT_TYPES = ("artist", "venue")


def _details_submitted(s):
    return s["details_submitted"]


def _fully_enabled(s):
    return s["charges_enabled"] and s["payouts_enabled"]


# Evaluated top to bottom. "restricted" before "pending" means submitted
# details with payouts still off is restricted, even with nothing due.
ONBOARDING_STATUS_RULES = (
    ("complete", lambda s: _details_submitted(s) and _fully_enabled(s)),
    ("restricted", lambda s: _details_submitted(s) and not _fully_enabled(s)),
    ("pending", lambda s: _details_submitted(s) or bool(s["requirements_currently_due"])),
)
DEFAULT_ONBOARDING_STATUS = "not_started"


def signals_from_account(account):
    """Extract the readiness signals from a Stripe account object (or dict)."""
    requirements = account.get("requirements") or {}
    return {
        "account_id": account.get("id"),
        "charges_enabled": bool(account.get("charges_enabled")),
        "payouts_enabled": bool(account.get("payouts_enabled")),
        "details_submitted": bool(account.get("details_submitted")),
        "requirements_currently_due": list(requirements.get("currently_due") or []),
        "requirements_eventually_due": list(requirements.get("eventually_due") or []),
    }


def derive_onboarding_status(signals):
    """not_started | pending | restricted | complete."""
    for status, predicate in ONBOARDING_STATUS_RULES:
        if predicate(signals):
            return status
    return DEFAULT_ONBOARDING_STATUS


def is_payout_ready(signals):
    """Whether the payout orchestrator may transfer to this account."""
    return bool(signals["payouts_enabled"] and signals["charges_enabled"])


def apply_account_signals(signals, synced_at=None):
    """Persist an account's signals onto every artist / venue that holds it.

    Returns the number of rows updated. Flushes; the caller commits.
    """
    account_id = signals["account_id"]
    synced_at = synced_at or datetime.now(timezone.utc)
    patch = {
        "charges_enabled": signals["charges_enabled"],
        "payouts_enabled": signals["payouts_enabled"],
        "details_submitted": signals["details_submitted"],
        "onboarding_status": derive_onboarding_status(signals),
        "connect_synced_at": synced_at,
    }

    updated = 0
    for artist in store_service.find_artists_by_payout_account(account_id):
        store_service.upsert_artist(artist.id, **patch)
        updated += 1
    for venue in store_service.find_venues_by_payout_account(account_id):
        store_service.upsert_venue(venue.id, **patch)
        updated += 1

    if updated == 0:
        logger.warning(f"Connect account {account_id} is not linked to any artist or venue")
    return updated


def sync_connect_account(gateway, account_id):
    """Fetch an account from Stripe, persist its flags, return its status.

    Returns:
        dict with the signals plus onboarding_status, payout_ready and an
        ISO-8601 synced_at.
    """
    account = gateway.retrieve_account(account_id)
    signals = signals_from_account(account)
    synced_at = datetime.now(timezone.utc)
    apply_account_signals(signals, synced_at=synced_at)

    status = dict(signals)
    status["onboarding_status"] = derive_onboarding_status(signals)
    status["payout_ready"] = is_payout_ready(signals)
    status["synced_at"] = synced_at.isoformat()
    return status


def _get_recipient(recipient_type, recipient_id):
    if recipient_type not in RECIPIENT_TYPES:
        raise ValidationError(
            f"recipient_type must be one of: {', '.join(RECIPIENT_TYPES)}",
            field="recipient_type",
        )
    if recipient_type == "artist":
        recipient = store_service.get_artist(recipient_id)
    else:
        recipient = store_service.get_venue(recipient_id)
    if recipient is None:
        raise NotFoundError(f"{recipient_type.capitalize()} {recipient_id} not found")
    return recipient


def get_or_create_connect_account(gateway, recipient_type, recipient_id,
                                  email=None, name=None):
    """Return the recipient's Connect account, creating an Express one if needed.

    Returns:
        dict: {"account_id": str, "is_new": bool}
    """
    recipient = _get_recipient(recipient_type, recipient_id)
    if recipient.payout_account_id:
        return {"account_id": recipient.payout_account_id, "is_new": False}

    account_id = gateway.create_account(
        email=email or recipient.email,
        name=name or recipient.name,
        recipient_type=recipient_type,
        recipient_id=recipient_id,
    )

    if recipient_type == "artist":
        store_service.upsert_artist(recipient_id, payout_account_id=account_id)
    else:
        store_service.upsert_venue(recipient_id, payout_account_id=account_id)

    db.session.add(AuditEvent(
        action="connect.account_created",
        metadata_={
            "recipient_type": recipient_type,
            "recipient_id": recipient_id,
            "account_id": account_id,
        },
    ))
    db.session.flush()
    logger.info(f"Created Connect account {account_id} for {recipient_type} {recipient_id}")
    return {"account_id": account_id, "is_new": True}


def create_onboarding_link(gateway, recipient_type, recipient_id, return_url, refresh_url):
    """One-time Stripe onboarding URL for the recipient's account.

    Raises NotFoundError if the recipient has no Connect account yet.
    """
    recipient = _get_recipient(recipient_type, recipient_id)
    if not recipient.payout_account_id:
        raise NotFoundError(
            f"{recipient_type.capitalize()} {recipient_id} has no payout account"
        )
    return gateway.create_account_link(
        recipient.payout_account_id, return_url=return_url, refresh_url=refresh_url
    )


def get_recipient_status(gateway, recipient_type, recipient_id):
    """Sync and return the onboarding status for a recipient's account."""
    recipient = _get_recipient(recipient_type, recipient_id)
    if not recipient.payout_account_id:
        return {
            "account_id": None,
            "onboarding_status": DEFAULT_ONBOARDING_STATUS,
            "payout_ready": False,
        }
    return sync_connect_account(gateway, recipient.payout_account_id)
