"""
Schemas for the sync control API, sync settings and the sync ledger.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from app.core.enums import DuplicateAction, OrderStatus, SyncDirection
from app.schemas.base import CamelSchema


class ImportOrdersRequest(CamelSchema):
    orders: List[Dict[str, Any]] = Field(default_factory=list)
    duplicate_action: DuplicateAction = DuplicateAction.SKIP


class ImportOrdersResult(CamelSchema):
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class ExportOrdersRequest(CamelSchema):
    order_ids: List[str] = Field(default_factory=list, min_length=1)

    @field_validator("order_ids", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        if isinstance(v, list):
            return [str(item) for item in v]
        return v


class SetIntervalRequest(CamelSchema):
    minutes: int = Field(..., ge=1)


class SyncSettingsPayload(CamelSchema):
    """Settings as submitted by an operator. A blank consumer secret keeps the stored one."""
    store_url: str
    consumer_key: str
    consumer_secret: Optional[str] = None
    sync_enabled: bool = True
    sync_direction: SyncDirection = SyncDirection.BOTH
    sync_interval_minutes: int = Field(15, ge=1)
    webhook_enabled: bool = False
    webhook_secret: Optional[str] = None
    status_mapping: Dict[str, str] = Field(default_factory=dict)

    @field_validator("store_url")
    @classmethod
    def validate_store_url(cls, v: str) -> str:
        v = (v or "").strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("Store URL must start with http:// or https://")
        return v

    @field_validator("consumer_key")
    @classmethod
    def validate_consumer_key(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Consumer key is required")
        return v

    @field_validator("status_mapping")
    @classmethod
    def validate_status_mapping(cls, v: Dict[str, str]) -> Dict[str, str]:
        unknown = {local for local in v.values() if str(local).upper() not in OrderStatus.values()}
        if unknown:
            raise ValueError(f"Unknown local statuses in mapping: {', '.join(sorted(map(str, unknown)))}")
        return {str(remote).strip().lower(): str(local).upper() for remote, local in v.items()}


class SyncSettingsRead(CamelSchema):
    """Stored settings as returned to clients; secrets are never echoed back."""
    company_id: str
    store_url: str
    consumer_key: str
    has_consumer_secret: bool = False
    sync_enabled: bool
    sync_direction: str
    sync_interval_minutes: int
    webhook_enabled: bool
    has_webhook_secret: bool = False
    webhook_url: Optional[str] = None
    status_mapping: Optional[Dict[str, str]] = None
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None

    @classmethod
    def from_settings(cls, sync_settings) -> "SyncSettingsRead":
        return cls(
            company_id=sync_settings.company_id,
            store_url=sync_settings.store_url,
            consumer_key=sync_settings.consumer_key,
            has_consumer_secret=bool(sync_settings.consumer_secret),
            sync_enabled=sync_settings.sync_enabled,
            sync_direction=sync_settings.sync_direction,
            sync_interval_minutes=sync_settings.sync_interval_minutes,
            webhook_enabled=sync_settings.webhook_enabled,
            has_webhook_secret=bool(sync_settings.webhook_secret),
            webhook_url=sync_settings.webhook_url,
            status_mapping=sync_settings.status_mapping,
            last_sync_at=sync_settings.last_sync_at,
            last_sync_status=sync_settings.last_sync_status,
            last_sync_error=sync_settings.last_sync_error,
        )


class SyncLogRead(CamelSchema):
    id: int
    company_id: str
    sync_type: str
    sync_direction: str
    status: str
    triggered_by: Optional[str] = None
    total_items: int
    success_count: int
    failed_count: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class SyncLogPage(CamelSchema):
    items: List[SyncLogRead]
    total: int
    page: int
    page_size: int
