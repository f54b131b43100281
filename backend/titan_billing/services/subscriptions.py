from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from titan_billing.models.subscription import Subscription
from titan_billing.models.user import User

INACTIVE_MARKERS = {"free", "trial"}


@dataclass
class SubscriptionSummary:
    subscription: str | None
    subscription_status: str
    has_active_subscription: bool
    is_trial: bool
    credits: Decimal


def has_active_subscription(user: User) -> bool:
    marker = user.subscription
    return marker is not None and marker not in INACTIVE_MARKERS


def summarize(user: User) -> SubscriptionSummary:
    return SubscriptionSummary(
        subscription=user.subscription,
        subscription_status=user.subscription_status or "trial",
        has_active_subscription=has_active_subscription(user),
        is_trial=user.subscription == "trial" or (user.subscription_status or "") in {"trial", "trialing"},
        credits=Decimal(str(user.credits or 0)),
    )


def find_customer_id(db: Session, user: User) -> str | None:
    """Stripe customer id from the user's most recent subscription row."""
    row = (
        db.query(Subscription)
        .filter(Subscription.user_id == user.user_id, Subscription.stripe_user_id.isnot(None))
        .order_by(Subscription.updated_time.desc(), Subscription.id.desc())
        .first()
    )
    return row.stripe_user_id if row else None
