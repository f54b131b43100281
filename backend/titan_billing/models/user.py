# titan_billing/models/user.py
import uuid

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text, func

from titan_billing.core.base import Base


def _new_user_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    # External id shared with the auth provider and carried in Stripe metadata as "userId".
    user_id = Column(String(64), unique=True, index=True, nullable=False, default=_new_user_id)

    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    credits = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    # Checkout session id of the paying subscription, "free"/"trial", or None.
    subscription = Column(Text, nullable=True)
    subscription_status = Column(String(30), nullable=False, server_default="trial", default="trial")

    created_time = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
