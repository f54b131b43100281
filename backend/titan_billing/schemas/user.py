from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class SubscriptionStatusOut(BaseModel):
    subscription: str | None = None
    subscription_status: str = Field(serialization_alias="subscriptionStatus")
    has_active_subscription: bool = Field(serialization_alias="hasActiveSubscription")
    is_trial: bool = Field(serialization_alias="isTrial")
    credits: Decimal
