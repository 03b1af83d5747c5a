from sqlalchemy import Column, Integer, String, DateTime, JSON, Boolean, Text
from sqlalchemy.sql import func

from app.core.utils import utc_now
from app.database import Base


class WebhookEvent(Base):
    """Inbox of accepted (signature-checked) webhook deliveries, kept for replay audits."""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True)
    company_id = Column(String(64), nullable=False, index=True)
    topic = Column(String(64), nullable=True)
    external_id = Column(String(64), nullable=True, index=True)
    payload = Column(JSON, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    result = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False)
