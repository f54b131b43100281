from __future__ import annotations

from fastapi import APIRouter, Depends

from titan_billing.dependencies.auth import get_current_user
from titan_billing.models.user import User
from titan_billing.schemas.user import SubscriptionStatusOut
from titan_billing.services.subscriptions import summarize

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/subscription", response_model=SubscriptionStatusOut)
def get_subscription_status(user: User = Depends(get_current_user)) -> SubscriptionStatusOut:
    summary = summarize(user)
    return SubscriptionStatusOut(
        subscription=summary.subscription,
        subscription_status=summary.subscription_status,
        has_active_subscription=summary.has_active_subscription,
        is_trial=summary.is_trial,
        credits=summary.credits,
    )
