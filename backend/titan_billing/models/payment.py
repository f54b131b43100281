from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String, func

from titan_billing.core.base import Base


class Payment(Base):
    """One-time checkout payment; stripe_id is the checkout session id."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    stripe_id = Column(String(255), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    customer_details = Column(JSON, nullable=True)
    payment_intent = Column(String(255), nullable=True)
    payment_time = Column(DateTime(timezone=True), nullable=True)
    currency = Column(String(10), nullable=True)
    created_time = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
