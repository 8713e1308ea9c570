"""
Common Pydantic schemas for API responses and requests.
Provides base classes and common data structures.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, ConfigDict

from fortune_city.models.base import BaseModel as OrmModel


class APIResponse(BaseModel):
    """Base API response model."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class SuccessResponse(APIResponse):
    """Success response model."""
    data: Optional[Any] = None


class ErrorResponse(APIResponse):
    """Error response model."""
    success: bool = False
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class PaginationParams(BaseModel):
    """Pagination parameters for list endpoints."""
    limit: int = Field(default=50, ge=1, le=200, description="Number of items per page")
    offset: int = Field(default=0, ge=0, description="Number of items to skip")


class PaginatedResponse(SuccessResponse):
    """Paginated response model."""
    data: List[Any]
    pagination: Dict[str, Any] = Field(
        description="Pagination metadata",
        json_schema_extra={
            "example": {
                "total": 100,
                "limit": 50,
                "offset": 0,
                "has_next": True,
                "has_previous": False
            }
        }
    )


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str = "0.1.0"
    services: Dict[str, str] = Field(
        default_factory=lambda: {
            "database": "healthy",
            "scheduler": "healthy",
        }
    )


def to_jsonable(data: Any) -> Any:
    """
    Plain JSON types for service results.

    ORM rows become their column dicts, Decimals become numbers and
    datetimes ISO strings.
    """
    return jsonable_encoder(
        data,
        custom_encoder={OrmModel: lambda row: to_jsonable(row.to_dict())}
    )


def create_success_response(data: Any = None, message: Optional[str] = None) -> SuccessResponse:
    """Create a success response."""
    return SuccessResponse(data=to_jsonable(data), message=message)


def create_error_response(
    message: str,
    error: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> ErrorResponse:
    """Create an error response."""
    return ErrorResponse(
        message=message,
        error=error,
        details=to_jsonable(details or {})
    )


def create_paginated_response(
    data: List[Any],
    total: int,
    limit: int,
    offset: int
) -> PaginatedResponse:
    """Create a paginated response."""
    return PaginatedResponse(
        data=to_jsonable(data),
        pagination={
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_next": offset + limit < total,
            "has_previous": offset > 0
        }
    )
