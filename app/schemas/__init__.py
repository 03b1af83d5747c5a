"""
Schema exports for the application.
"""

# Base schemas
from .base import BaseSchema, CamelSchema, ApiResponse

# Sync control API schemas
from .sync import (
    ImportOrdersRequest,
    ImportOrdersResult,
    ExportOrdersRequest,
    SetIntervalRequest,
    SyncSettingsPayload,
    SyncSettingsRead,
    SyncLogRead,
    SyncLogPage,
)

# Batch import job schemas
from .import_job import ImportJobCreate, ImportJobRead
