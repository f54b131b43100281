from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from titan_billing.models.invoice import Invoice
from titan_billing.models.payment import Payment
from titan_billing.models.subscription import Subscription, SubscriptionStatus
from titan_billing.models.user import User
from titan_billing.services.stripe import StripeService, minor_to_major

logger = logging.getLogger(__name__)


class BillingSyncError(Exception):
    """A webhook could not be applied; the provider is expected to redeliver."""

    status_code = 500


class RecordNotFoundError(BillingSyncError):
    status_code = 404


@dataclass
class WebhookOutcome:
    message: str
    data: Any = None
    handled: bool = True
    status: int = 200

    def body(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload


def _timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _metadata(obj: Any) -> dict[str, Any]:
    return dict(obj.get("metadata") or {})


def _subscription_row(row: Subscription) -> dict[str, Any]:
    return {
        "subscription_id": row.subscription_id,
        "stripe_user_id": row.stripe_user_id,
        "status": row.status,
        "start_date": row.start_date.isoformat() if row.start_date else None,
        "plan_id": row.plan_id,
        "user_id": row.user_id,
        "email": row.email,
    }


def _invoice_row(row: Invoice) -> dict[str, Any]:
    return {
        "invoice_id": row.invoice_id,
        "subscription_id": row.subscription_id,
        "amount_paid": str(row.amount_paid) if row.amount_paid is not None else None,
        "amount_due": str(row.amount_due) if row.amount_due is not None else None,
        "currency": row.currency,
        "status": row.status,
        "user_id": row.user_id,
        "email": row.email,
    }


class BillingSyncService:
    """
    Applies Stripe webhook events to subscriptions, invoices, payments and user rows.

    Each event is applied in one database transaction. Nothing is retried here;
    a failed event is rolled back and surfaced so Stripe redelivers it.
    """

    def __init__(self, db: Session, stripe_service: StripeService):
        self.db = db
        self.stripe_service = stripe_service
        self._handlers = {
            "customer.subscription.created": partial(self._handle_subscription_event, change="created"),
            "customer.subscription.updated": partial(self._handle_subscription_event, change="updated"),
            "customer.subscription.deleted": partial(self._handle_subscription_event, change="deleted"),
            "invoice.payment_succeeded": partial(self._handle_invoice_event, outcome="succeeded"),
            "invoice.payment_failed": partial(self._handle_invoice_event, outcome="failed"),
            "checkout.session.completed": self._handle_checkout_session,
        }

    @property
    def supported_event_types(self) -> list[str]:
        return sorted(self._handlers)

    def process_event(self, event: Any) -> WebhookOutcome:
        event_type = event.get("type")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Ignoring unhandled Stripe event type: %s", event_type)
            return WebhookOutcome(
                message=f"Unhandled event type: {event_type}",
                data={"handled": False, "type": event_type},
                handled=False,
            )

        obj = (event.get("data") or {}).get("object") or {}
        try:
            outcome = handler(obj)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Database error applying Stripe event %s (%s)", event.get("id"), event_type)
            raise BillingSyncError(f"Database error while handling {event_type}") from exc
        except Exception:
            self.db.rollback()
            raise
        logger.info("Applied Stripe event %s (%s): %s", event.get("id"), event_type, outcome.message)
        return outcome

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def _require_customer_email(self, customer_id: str | None) -> str:
        email = self.stripe_service.get_customer_email(customer_id)
        if not email:
            raise BillingSyncError("Customer email could not be fetched")
        return email

    def _handle_subscription_event(self, subscription: Any, *, change: str) -> WebhookOutcome:
        subscription_id = subscription.get("id")
        if not subscription_id:
            raise BillingSyncError("Subscription event missing id")
        email = self._require_customer_email(subscription.get("customer"))

        row = (
            self.db.query(Subscription)
            .filter(Subscription.subscription_id == subscription_id)
            .first()
        )

        if change == "deleted":
            if row is None:
                raise RecordNotFoundError(f"Subscription {subscription_id} not found")
            row.status = SubscriptionStatus.CANCELLED
            row.email = email
            cleared = (
                self.db.query(User)
                .filter(User.email == email)
                .update({User.subscription: None}, synchronize_session="fetch")
            )
            logger.info(
                "Cancelled subscription %s; cleared marker on %s user row(s)", subscription_id, cleared
            )
        else:
            if row is None:
                row = Subscription(subscription_id=subscription_id)
                self.db.add(row)
            items = (subscription.get("items") or {}).get("data") or []
            price = (items[0].get("price") or {}) if items else {}
            user_id = _metadata(subscription).get("userId")

            row.stripe_user_id = subscription.get("customer")
            row.status = subscription.get("status") or row.status or SubscriptionStatus.ACTIVE
            row.start_date = _timestamp(subscription.get("created")) or row.start_date
            row.plan_id = price.get("id") or row.plan_id
            row.email = email
            if user_id:
                row.user_id = user_id

        self.db.flush()
        return WebhookOutcome(message=f"Subscription {change} success", data=[_subscription_row(row)])

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------
    def _handle_invoice_event(self, invoice: Any, *, outcome: str) -> WebhookOutcome:
        invoice_id = invoice.get("id")
        if not invoice_id:
            raise BillingSyncError("Invoice event missing id")
        email = self._require_customer_email(invoice.get("customer"))

        existing = (
            self.db.query(Invoice)
            .filter(Invoice.invoice_id == invoice_id, Invoice.status == outcome)
            .first()
        )
        if existing is not None:
            logger.info("Invoice %s already recorded as %s; skipping", invoice_id, outcome)
            return WebhookOutcome(message=f"Invoice payment {outcome}", data=[_invoice_row(existing)])

        row = Invoice(
            invoice_id=invoice_id,
            subscription_id=_invoice_subscription_id(invoice),
            amount_paid=minor_to_major(invoice.get("amount_paid")) if outcome == "succeeded" else None,
            amount_due=minor_to_major(invoice.get("amount_due")) if outcome == "failed" else None,
            currency=invoice.get("currency") or "usd",
            status=outcome,
            user_id=_metadata(invoice).get("userId"),
            email=email,
        )
        self.db.add(row)
        self.db.flush()
        return WebhookOutcome(message=f"Invoice payment {outcome}", data=[_invoice_row(row)])

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def _handle_checkout_session(self, session: Any) -> WebhookOutcome:
        metadata = _metadata(session)
        if metadata.get("subscription") == "true":
            return self._apply_subscription_checkout(session, metadata)
        return self._apply_one_time_payment(session, metadata)

    def _find_user(self, user_id: str | None) -> User:
        user = self.db.query(User).filter(User.user_id == user_id).first() if user_id else None
        if user is None:
            raise RecordNotFoundError(f"User {user_id} not found")
        return user

    def _apply_subscription_checkout(self, session: Any, metadata: dict[str, Any]) -> WebhookOutcome:
        user_id = metadata.get("userId")
        # Organization checkouts carry organizationId instead of userId.
        user = self._find_user(user_id) if user_id else None

        subscription_id = session.get("subscription")
        if not subscription_id:
            raise BillingSyncError("Checkout session missing subscription id")
        self.stripe_service.update_subscription_metadata(subscription_id, metadata)

        linked = 0
        email = metadata.get("email")
        if user_id and email:
            linked = (
                self.db.query(Invoice)
                .filter(Invoice.email == email)
                .update({Invoice.user_id: user_id}, synchronize_session="fetch")
            )
        if user is not None:
            user.subscription = session.get("id")
        self.db.flush()

        return WebhookOutcome(
            message="Subscription metadata updated successfully",
            data={"subscription_id": subscription_id, "user_id": user_id, "invoices_linked": linked},
        )

    def _apply_one_time_payment(self, session: Any, metadata: dict[str, Any]) -> WebhookOutcome:
        user = self._find_user(metadata.get("userId"))
        session_id = session.get("id")
        if not session_id:
            raise BillingSyncError("Checkout session missing id")

        already = self.db.query(Payment).filter(Payment.stripe_id == session_id).first()
        if already is not None:
            logger.info("Checkout session %s already credited; skipping", session_id)
            return WebhookOutcome(
                message="Payment already recorded",
                data={"user_id": user.user_id, "credits": str(user.credits)},
            )

        amount = minor_to_major(session.get("amount_total"))
        self.db.add(
            Payment(
                stripe_id=session_id,
                user_id=user.user_id,
                email=metadata.get("email") or None,
                amount=amount,
                customer_details=_plain(session.get("customer_details")),
                payment_intent=session.get("payment_intent"),
                payment_time=_timestamp(session.get("created")),
                currency=session.get("currency"),
            )
        )
        # Increment in SQL so concurrent top-ups for the same user both land.
        self.db.query(User).filter(User.id == user.id).update(
            {User.credits: User.credits + amount},
            synchronize_session=False,
        )
        self.db.flush()
        self.db.refresh(user)

        return WebhookOutcome(
            message="Payment and credits updated successfully",
            data={"user_id": user.user_id, "credits": str(user.credits)},
        )


def _invoice_subscription_id(invoice: Any) -> str | None:
    subscription_id = invoice.get("subscription")
    if subscription_id:
        return subscription_id
    # Newer API versions nest it under parent.subscription_details.
    parent = invoice.get("parent") or {}
    return (parent.get("subscription_details") or {}).get("subscription")


def _plain(value: Any) -> dict[str, Any] | None:
    return dict(value) if value is not None else None
