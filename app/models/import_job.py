import uuid

from sqlalchemy import Column, DateTime, String, Text, JSON
from sqlalchemy.sql import func

from app.core.enums import ImportJobStatus
from app.core.utils import utc_now
from app.database import Base


def empty_checkpoint() -> dict:
    return {
        "currentPage": 1,
        "currentBatch": 0,
        "totalBatches": None,
        "processedCount": 0,
        "grandTotal": None,
        "imported": 0,
        "updated": 0,
        "skipped": 0,
        "failed": 0,
    }


class ImportJob(Base):
    """
    Resumable bulk import of remote orders.

    The progress column is the checkpoint: currentPage always names the next
    page to fetch, so a driver restarted from it re-processes at most the
    page that was in flight.
    """
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String(64), nullable=False, index=True)
    job_type = Column(String(32), nullable=False, default="orders")
    status = Column(String(32), nullable=False, default=ImportJobStatus.PENDING.value, index=True)
    options = Column(JSON, nullable=True)
    progress = Column(JSON, nullable=False, default=empty_checkpoint)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ImportJob(id={self.id}, company={self.company_id}, status={self.status})>"
