from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Text
from sqlalchemy.sql import func

from app.core.enums import SyncDirection
from app.core.utils import utc_now
from app.database import Base


class SyncSettings(Base):
    """
    Per-tenant connection and sync configuration for the remote store.
    Only mutated through the settings-save operation, which re-tests
    connectivity before credentials are persisted.
    """
    __tablename__ = "sync_settings"

    id = Column(Integer, primary_key=True)
    company_id = Column(String(64), nullable=False, unique=True, index=True)

    store_url = Column(String(512), nullable=False)
    consumer_key = Column(String(255), nullable=False)
    consumer_secret = Column(String(255), nullable=False)

    sync_enabled = Column(Boolean, nullable=False, default=True)
    sync_direction = Column(String(32), nullable=False, default=SyncDirection.BOTH.value)
    sync_interval_minutes = Column(Integer, nullable=False, default=15)

    webhook_enabled = Column(Boolean, nullable=False, default=False)
    webhook_secret = Column(String(255), nullable=True)
    webhook_url = Column(String(512), nullable=True)
    webhook_ids = Column(JSON, nullable=True)  # topic -> remote webhook id

    # remote status -> local status overrides
    status_mapping = Column(JSON, nullable=True)

    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_status = Column(String(32), nullable=True)
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    @property
    def direction(self) -> SyncDirection:
        try:
            return SyncDirection(self.sync_direction)
        except ValueError:
            return SyncDirection.BOTH

    def __repr__(self):
        return f"<SyncSettings(company='{self.company_id}', store='{self.store_url}', direction='{self.sync_direction}')>"
