"""
Core module exports.
"""
from .enums import (
    OrderStatus,
    SyncDirection,
    LedgerStatus,
    ImportJobStatus,
    DuplicateAction,
)

from .exceptions import (
    BaseServiceError,
    RemoteAPIError,
    RemoteConnectionError,
    RemoteAuthError,
    RemoteNotFoundError,
    OrderValidationError,
    SyncError,
    SettingsValidationError,
    ImportJobError,
    ImportJobNotFoundError,
)
