from typing import Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass


class RemoteAPIError(BaseServiceError):
    """Raised when a call to the remote store API fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_text: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


class RemoteConnectionError(RemoteAPIError):
    """Raised on timeouts, network failures and 5xx responses once retries are exhausted."""
    pass


class RemoteAuthError(RemoteAPIError):
    """Raised when the remote store rejects the credentials (401/403)."""
    pass


class RemoteNotFoundError(RemoteAPIError):
    """Raised when the remote resource does not exist (404)."""
    pass


class OrderValidationError(BaseServiceError):
    """Raised when an order payload is missing required fields or carries bad amounts."""
    pass


class SyncError(BaseServiceError):
    """Raised when a sync operation cannot proceed or the ledger is misused."""
    pass


class SettingsValidationError(BaseServiceError):
    """Raised when sync settings are rejected before being persisted."""
    pass


class ImportJobError(BaseServiceError):
    """Raised on an illegal import job state transition."""
    pass


class ImportJobNotFoundError(ImportJobError):
    """Raised when an import job does not exist for the tenant."""
    pass
