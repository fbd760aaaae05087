from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, JSON

from .db import Base


def _utcnow():
    return datetime.now(timezone.utc)


class SideEffectFailure(Base):
    """A best-effort booking update that failed and needs manual reconciliation."""

    __tablename__ = "side_effect_failures"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(64), index=True)             # e.g. "mark_completed"
    booking_id = Column(String(64), index=True, nullable=True)
    attempted_status = Column(String(16), nullable=True)
    gateway_order_id = Column(String(64), index=True, nullable=True)
    gateway_payment_id = Column(String(64), nullable=True)
    error_type = Column(String(128))
    error_message = Column(Text)
    context = Column(JSON, default=dict)
    resolved = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
