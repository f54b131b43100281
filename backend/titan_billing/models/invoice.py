from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, Numeric, String, UniqueConstraint, func

from titan_billing.core.base import Base


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(String(255), nullable=False, index=True)
    subscription_id = Column(String(255), nullable=True, index=True)
    amount_paid = Column(Numeric(12, 2), nullable=True)
    amount_due = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(10), nullable=False, server_default="usd")
    status = Column(String(20), nullable=False)  # succeeded | failed
    email = Column(String(255), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    created_time = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("invoice_id", "status", name="uq_invoices_invoice_id_status"),
    )
