from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, func

from titan_billing.core.base import Base


class SubscriptionStatus:
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    stripe_user_id = Column(String(255), nullable=True, index=True)
    status = Column(String(30), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True)
    plan_id = Column(String(255), nullable=True)
    user_id = Column(String(64), nullable=True, index=True)
    email = Column(String(255), nullable=False)
    created_time = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_time = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
