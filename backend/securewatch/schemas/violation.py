"""
violation.py - Pydantic schemas for violation recording and API responses.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from securewatch.models.enums import ViolationSeverity, ViolationStatus


class ViolationCreate(BaseModel):
    """Violation reported by the ingestion/scoring pipeline."""

    employee_id: int = Field(..., description="Subject of the violation")
    type: str = Field(..., min_length=1, max_length=100, description="Violation type/category")
    severity: ViolationSeverity = Field(..., description="Low | Medium | High | Critical")
    description: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="risk_score, source, regulatory_tags, ..."
    )
    violation_id: Optional[str] = Field(
        None,
        max_length=36,
        description="Caller-supplied id; resubmitting the same id is idempotent",
    )

    @field_validator("severity", mode="before")
    @classmethod
    def parse_severity(cls, v: Any) -> Any:
        return ViolationSeverity.parse(v) if isinstance(v, str) else v


class ViolationCreated(BaseModel):
    violation_id: str
    created: bool = Field(..., description="False when the id was already recorded")
    scheduled_executions: list[int] = Field(default_factory=list)


class ViolationRead(BaseModel):
    """Read-only violation record."""

    id: str = Field(..., description="Violation UUID")
    employee_id: int
    type: str
    severity: str = Field(..., description="Low | Medium | High | Critical")
    description: str
    metadata_json: Optional[str] = Field(None, description="JSON-serialized metadata")
    status: str = Field(..., description="Active | Investigating | Resolved")
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ViolationSummary(BaseModel):
    """Paginated violation list response."""

    total: int = Field(..., description="Total matching violations")
    violations: list[ViolationRead] = Field(..., description="Violation records")


class ViolationStatusUpdate(BaseModel):
    status: ViolationStatus = Field(..., description="Forward only: Active -> Investigating -> Resolved")
