"""
Response envelope shared by the control API routes.
"""

from typing import Any, Optional

from fastapi import status as http_status
from fastapi.responses import JSONResponse

from app.schemas.base import ApiResponse
from app.core.exceptions import (
    BaseServiceError,
    ImportJobError,
    ImportJobNotFoundError,
    SettingsValidationError,
    SyncError,
)


def ok(message: str, data: Any = None, status: str = "success") -> dict:
    return ApiResponse[Any](success=status != "failed", message=message, status=status, data=data).model_dump()


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse[None](success=False, message=message, status="failed").model_dump(),
    )


def status_code_for(exc: BaseServiceError) -> int:
    if isinstance(exc, ImportJobNotFoundError):
        return http_status.HTTP_404_NOT_FOUND
    if isinstance(exc, ImportJobError):
        return http_status.HTTP_409_CONFLICT
    if isinstance(exc, (SettingsValidationError, SyncError)):
        return http_status.HTTP_400_BAD_REQUEST
    return http_status.HTTP_500_INTERNAL_SERVER_ERROR


def service_error_response(exc: BaseServiceError, message: Optional[str] = None) -> JSONResponse:
    return error_response(status_code_for(exc), message or str(exc))
