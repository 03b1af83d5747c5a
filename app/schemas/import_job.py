from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import Field

from app.schemas.base import CamelSchema


class ImportJobCreate(CamelSchema):
    batch_size: Optional[int] = Field(None, ge=1, le=100)
    order_status: Optional[str] = None  # remote status filter, e.g. "processing"
    after: Optional[datetime] = None  # only orders created after this instant
    auto_start: bool = False


class ImportJobRead(CamelSchema):
    id: str
    company_id: str
    job_type: str
    status: str
    options: Optional[Dict[str, Any]] = None
    progress: Dict[str, Any]
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
