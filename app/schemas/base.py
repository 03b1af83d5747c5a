"""
Base schemas with common functionality.
"""
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

D = TypeVar('D')


class BaseSchema(BaseModel):
    """Base schema with common functionality for all schemas"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True
    )


class CamelSchema(BaseSchema):
    """Schema exchanged with API clients in camelCase; snake_case is accepted on input too"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class ApiResponse(BaseModel, Generic[D]):
    """
    Envelope returned by every control API endpoint.

    status distinguishes a partial success from a full one instead of
    collapsing both into success=True.
    """
    success: bool
    message: str
    status: str = "success"  # success | partial | failed
    data: Optional[D] = None
