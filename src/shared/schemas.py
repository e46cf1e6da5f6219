"""
Shared Schemas - Pydantic Models for Validation and Serialization
Response models used by the system API.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(str, Enum):
    """Health check status options."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)


class ErrorDetail(BaseModel):
    """Error details in the standard error envelope."""
    type: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    request_id: Optional[str] = Field(None, description="Request ID for tracking")


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: ErrorDetail


class ComponentHealth(BaseSchema):
    """Health of one component."""
    status: HealthStatus
    detail: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""
    status: HealthStatus
    version: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    components: Dict[str, ComponentHealth] = Field(default_factory=dict)

