from __future__ import annotations

import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

import stripe

from titan_billing.core.config import settings

logger = logging.getLogger(__name__)


class StripeServiceError(Exception):
    """Base error for Stripe service operations."""


class StripeConfigError(StripeServiceError):
    """Raised when Stripe keys are missing from the environment."""


class StripeWebhookError(StripeServiceError):
    """Raised when a webhook payload cannot be verified."""


def stripe_field(obj: Any, key: str) -> Any:
    """Read one field from an SDK object or plain dict; None when absent."""
    if obj is None or key not in obj:
        return None
    return obj[key]


def parse_raw_payload(payload: bytes) -> dict[str, Any]:
    """
    Deserialize the raw webhook payload as JSON. Handlers work on this plain dict
    once the SDK has verified the signature.
    """
    try:
        text = payload.decode("utf-8")
        return json.loads(text)
    except (UnicodeDecodeError, ValueError) as exc:
        logger.error("Unable to parse Stripe payload: %s", exc)
        return {}


def minor_to_major(amount: Any) -> Decimal:
    """Convert Stripe integer minor units (cents) to a two-place major amount."""
    return (Decimal(int(amount or 0)) / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class StripeService:
    """
    Stripe integration facade. All direct Stripe SDK calls live here.

    Responsibilities:
    - Verify webhook signatures and build event envelopes
    - Resolve customer emails for webhook reconciliation
    - Create checkout and billing portal sessions
    - Re-tag subscriptions with checkout metadata
    """

    def __init__(self, stripe_client: Any | None = None):
        self.stripe = stripe_client or stripe
        if settings.STRIPE_SECRET_KEY:
            self.stripe.api_key = settings.STRIPE_SECRET_KEY

    def _require_secret_key(self) -> Any:
        if not settings.STRIPE_SECRET_KEY:
            logger.error("Missing STRIPE_SECRET_KEY environment variable")
            raise StripeConfigError("Stripe configuration error")
        return self.stripe

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------
    def parse_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Validate the webhook signature and return the event as a plain dict."""
        stripe_client = self._require_secret_key()
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("Missing STRIPE_WEBHOOK_SECRET environment variable")
            raise StripeConfigError("Stripe configuration error")
        if not signature:
            raise StripeWebhookError("Missing Stripe-Signature header")
        try:
            stripe_client.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=settings.STRIPE_WEBHOOK_SECRET,
                tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe_client.SignatureVerificationError as exc:
            raise StripeWebhookError(f"Invalid Stripe signature: {exc}") from exc
        except ValueError as exc:
            # Body was not valid JSON.
            raise StripeWebhookError(f"Invalid Stripe payload: {exc}") from exc

        event = parse_raw_payload(payload)
        if not isinstance(event, dict) or not event:
            raise StripeWebhookError("Invalid Stripe payload")
        return event

    # ------------------------------------------------------------------
    # Lookups used during reconciliation
    # ------------------------------------------------------------------
    def get_customer_email(self, customer_id: str | None) -> str | None:
        """Return the customer's email, or None when Stripe cannot provide one."""
        if not customer_id:
            return None
        stripe_client = self._require_secret_key()
        try:
            customer = stripe_client.Customer.retrieve(customer_id)
        except stripe_client.StripeError as exc:
            logger.error("Error fetching Stripe customer %s: %s", customer_id, exc)
            return None
        return stripe_field(customer, "email") or None

    def update_subscription_metadata(self, subscription_id: str, metadata: dict[str, str]) -> Any:
        stripe_client = self._require_secret_key()
        try:
            return stripe_client.Subscription.modify(subscription_id, metadata=metadata)
        except stripe_client.StripeError as exc:
            raise StripeServiceError(f"Error updating subscription metadata: {exc}") from exc

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def create_checkout_session(
        self,
        *,
        price_id: str,
        quantity: int,
        subscription: bool,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        subscription_metadata: dict[str, str] | None = None,
    ) -> Any:
        stripe_client = self._require_secret_key()
        params: dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": quantity}],
            "metadata": metadata,
            "mode": "subscription" if subscription else "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "allow_promotion_codes": True,
        }
        if subscription_metadata:
            params["subscription_data"] = {"metadata": subscription_metadata}
        try:
            return stripe_client.checkout.Session.create(**params)
        except stripe_client.StripeError as exc:
            raise StripeServiceError(str(exc)) from exc

    def create_portal_session(self, *, customer_id: str, return_url: str) -> Any:
        stripe_client = self._require_secret_key()
        try:
            return stripe_client.billing_portal.Session.create(customer=customer_id, return_url=return_url)
        except stripe_client.StripeError as exc:
            raise StripeServiceError(str(exc)) from exc
