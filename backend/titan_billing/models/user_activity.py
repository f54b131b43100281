from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, func

from titan_billing.core.base import Base


class UserActivity(Base):
    __tablename__ = "user_activity"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    activity_type = Column(String(50), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes.
    activity_metadata = Column("metadata", JSON, nullable=True)
    source = Column(String(20), nullable=False, server_default="web", default="web")
    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
