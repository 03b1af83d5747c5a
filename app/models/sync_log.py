# app/models/sync_log.py
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, Index
from sqlalchemy.sql import func

from app.core.enums import LedgerStatus
from app.core.utils import utc_now
from app.database import Base


class SyncLog(Base):
    """
    Append-only ledger of sync attempts.

    An entry is created in_progress when a sync operation starts and completed
    exactly once; after completed_at is set the row is never modified.
    """
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(64), nullable=False, index=True)

    sync_type = Column(String(32), nullable=False, index=True)  # webhook, polling, manual_import, export_order, batch_import
    sync_direction = Column(String(32), nullable=False)  # from_remote, to_remote
    status = Column(String(32), nullable=False, default=LedgerStatus.IN_PROGRESS.value, index=True)
    triggered_by = Column(String(64), nullable=True)

    total_items = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)

    started_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    error_message = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_sync_logs_company_started", "company_id", "started_at"),
    )

    def __repr__(self):
        return (f"<SyncLog(id={self.id}, company='{self.company_id}', type='{self.sync_type}', "
                f"status='{self.status}', ok={self.success_count}, failed={self.failed_count})>")
