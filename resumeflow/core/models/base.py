"""Base Pydantic schemas and helpers for resumeflow models."""

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Pydantic Base Classes
# =============================================================================


class PipelineBaseModel(BaseModel):
    """Base Pydantic model for all schemas with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        # Enum fields hold their plain values, which keeps JSON dumps stable
        use_enum_values=True,
        str_strip_whitespace=True,
    )


class TimestampSchema(PipelineBaseModel):
    """Schema with timestamp fields."""

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class IdentifiedSchema(PipelineBaseModel):
    """Schema with UUID identifier."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique identifier")


# =============================================================================
# Utility Functions
# =============================================================================


def generate_id(prefix: str = "") -> str:
    """Generate a prefixed UUID.

    Args:
        prefix: Optional prefix for the ID (e.g., "job_", "res_")

    Returns:
        Prefixed UUID string
    """
    uid = str(uuid.uuid4())
    return f"{prefix}{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)
