"""Stripe gateway — every call to the payment processor goes through here.

A StripeGateway is built per request from app config and passed into the
services that need it, so nothing depends on a module-level api_key having
been set first and tests can hand in a fake.

Stripe SDK exceptions never leave this module: they are translated to
UpstreamProcessorError (retryable for connection errors and rate limits).

Transfers are idempotent from the caller's side: each one carries a
deterministic idempotency key derived from (order_id, recipient_type,
payout attempt), and an ambiguous outcome (timeout, dropped connection,
429) is resolved by looking the transfer up in the order's transfer group
before retrying.
"""

import logging
from contextlib import contextmanager

import stripe
from flask import current_app

from settlement.errors import ConfigurationError, UpstreamProcessorError

logger = logging.getLogger(__name__)

AMBIGUOUS_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


def transfer_idempotency_key(order_id, recipient_type, attempt=0):
    """Stripe replays a key's stored result, errors included, for 24h.

    The attempt number moves a reconciliation retry onto a fresh key.
    """
    return f"transfer-{order_id}-{recipient_type}-{attempt}"


@contextmanager
def stripe_errors(action):
    """Translate Stripe SDK errors raised inside the block."""
    try:
        yield
    except stripe.StripeError as e:
        message = getattr(e, "user_message", None) or str(e)
        raise UpstreamProcessorError(
            f"Stripe {action} failed: {message}",
            retryable=isinstance(e, AMBIGUOUS_ERRORS),
            stripe_code=getattr(e, "code", None),
        ) from e


class StripeGateway:
    """Thin, explicitly-configured wrapper over the stripe SDK."""

    def __init__(self, api_key, webhook_secret=None, currency="usd",
                 connect_country="US", max_transfer_retries=2):
        if not api_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.connect_country = connect_country
        self.max_transfer_retries = max_transfer_retries

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            currency=config.get("STRIPE_CURRENCY", "usd"),
            connect_country=config.get("STRIPE_CONNECT_COUNTRY", "US"),
            max_transfer_retries=config.get("STRIPE_TRANSFER_MAX_RETRIES", 2),
        )

    # ──────────────────────────────────────────────
    # Webhooks
    # ──────────────────────────────────────────────

    def construct_event(self, payload, sig_header):
        """Verify the Stripe-Signature header and parse the event.

        Raises stripe.SignatureVerificationError (or ValueError for a bad
        payload); the webhook blueprint turns those into a 400.
        """
        if not self.webhook_secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
        return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)

    # ──────────────────────────────────────────────
    # Checkout
    # ──────────────────────────────────────────────

    def create_payment_session(self, amount_cents, currency, product_name,
                               metadata, transfer_group, success_url,
                               cancel_url, idempotency_key, image_url=None):
        """Create a one-time payment Checkout Session. Returns {id, url}."""
        product_data = {"name": product_name}
        if image_url:
            product_data["images"] = [image_url]

        with stripe_errors("checkout session creation"):
            session = stripe.checkout.Session.create(
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": currency,
                        "unit_amount": amount_cents,
                        "product_data": product_data,
                    },
                    "quantity": 1,
                }],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                payment_intent_data={"transfer_group": transfer_group},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        return {"id": session["id"], "url": session["url"]}

    def create_subscription_session(self, price_id, metadata, success_url,
                                    cancel_url, customer_id=None,
                                    customer_email=None):
        """Create a subscription Checkout Session. Returns {id, url}."""
        params = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        with stripe_errors("subscription session creation"):
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        return {"id": session["id"], "url": session["url"]}

    def retrieve_subscription_price_id(self, subscription_id):
        """Price ID of the subscription's first item, or None."""
        with stripe_errors("subscription retrieval"):
            sub = stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
        return extract_price_id(sub)

    def retrieve_charge_id(self, payment_intent_id):
        """Latest charge ID for a PaymentIntent (the transfers' source_transaction)."""
        with stripe_errors("payment intent retrieval"):
            intent = stripe.PaymentIntent.retrieve(
                payment_intent_id, expand=["latest_charge"], api_key=self.api_key
            )
        charge = intent.get("latest_charge")
        if isinstance(charge, str) or charge is None:
            return charge
        return charge.get("id")

    # ──────────────────────────────────────────────
    # Connect accounts
    # ──────────────────────────────────────────────

    def create_account(self, email, name, recipient_type, recipient_id):
        """Create an Express account. Returns the account ID."""
        description = (
            "Art sales and commissions"
            if recipient_type == "artist"
            else "Art venue hosting and commissions"
        )
        business_profile = {"product_description": description}
        if name:
            business_profile["name"] = name

        with stripe_errors("account creation"):
            account = stripe.Account.create(
                type="express",
                country=self.connect_country,
                email=email,
                business_type="individual",
                capabilities={
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                business_profile=business_profile,
                metadata={
                    "recipient_id": recipient_id,
                    "recipient_type": recipient_type,
                },
                idempotency_key=f"connect-account-{recipient_type}-{recipient_id}",
                api_key=self.api_key,
            )
        return account["id"]

    def create_account_link(self, account_id, return_url, refresh_url):
        """One-time onboarding URL for an account."""
        with stripe_errors("account link creation"):
            link = stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
                api_key=self.api_key,
            )
        return link["url"]

    def retrieve_account(self, account_id):
        """Fetch an account; returns the raw Stripe account object."""
        with stripe_errors("account retrieval"):
            return stripe.Account.retrieve(account_id, api_key=self.api_key)

    # ──────────────────────────────────────────────
    # Transfers
    # ──────────────────────────────────────────────

    def find_transfer(self, order_id, recipient_type):
        """Look for an already-issued transfer for this order + recipient.

        Returns the transfer ID or None.
        """
        with stripe_errors("transfer lookup"):
            transfers = stripe.Transfer.list(
                transfer_group=order_id, limit=100, api_key=self.api_key
            )
        for transfer in transfers.get("data", []):
            metadata = transfer.get("metadata") or {}
            if (metadata.get("order_id") == order_id
                    and metadata.get("recipient_type") == recipient_type
                    and not transfer.get("reversed")):
                return transfer["id"]
        return None

    def create_transfer(self, amount_cents, destination, source_charge_id,
                        order_id, recipient_type, currency=None,
                        lookup_existing=False, attempt=0):
        """Issue one transfer sourced from the original charge.

        Args:
            lookup_existing: check the processor for an earlier transfer
                first (reconciliation runs; idempotency keys expire).
            attempt: the order's payout attempt; retries within one call
                share a key.

        Returns:
            The transfer ID (new, or the existing one for this order +
            recipient).

        Raises:
            UpstreamProcessorError: Stripe rejected the transfer, or the
                outcome stayed ambiguous after all retries.
        """
        if lookup_existing:
            existing = self.find_transfer(order_id, recipient_type)
            if existing:
                logger.info(
                    f"Found existing {recipient_type} transfer {existing} for order {order_id}"
                )
                return existing

        key = transfer_idempotency_key(order_id, recipient_type, attempt)
        attempts = 0
        while True:
            attempts += 1
            try:
                transfer = stripe.Transfer.create(
                    amount=amount_cents,
                    currency=currency or self.currency,
                    destination=destination,
                    source_transaction=source_charge_id,
                    transfer_group=order_id,
                    metadata={
                        "order_id": order_id,
                        "recipient_type": recipient_type,
                    },
                    idempotency_key=key,
                    api_key=self.api_key,
                )
                return transfer["id"]
            except AMBIGUOUS_ERRORS as e:
                # The transfer may or may not exist — ask before retrying
                logger.warning(
                    f"Ambiguous {recipient_type} transfer outcome for order {order_id} "
                    f"(attempt {attempts}): {e}"
                )
                existing = self.find_transfer(order_id, recipient_type)
                if existing:
                    return existing
                if attempts > self.max_transfer_retries:
                    raise UpstreamProcessorError(
                        f"Stripe transfer to {recipient_type} did not complete: {e}",
                        retryable=True,
                        recipient_type=recipient_type,
                    ) from e
            except stripe.StripeError as e:
                message = getattr(e, "user_message", None) or str(e)
                raise UpstreamProcessorError(
                    f"Stripe transfer to {recipient_type} failed: {message}",
                    retryable=False,
                    recipient_type=recipient_type,
                    stripe_code=getattr(e, "code", None),
                ) from e


def extract_price_id(subscription):
    """Price ID of a subscription object's first item, or None."""
    items = subscription.get("items") or {}
    data = items.get("data") or []
    if not data:
        return None
    return (data[0].get("price") or {}).get("id")


def get_gateway():
    """Build a gateway from the current app's config.

    Raises ConfigurationError when credentials are missing.
    """
    return StripeGateway.from_config(current_app.config)
