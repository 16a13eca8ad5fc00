"""
execution.py - Pydantic schemas for execution API responses.

`failed` executions are the dashboard's failure indicator.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ExecutionRead(BaseModel):
    id: int
    policy_id: int
    violation_id: str
    employee_id: int
    action_id: Optional[int] = None
    action_type: str
    execution_order: int
    status: str = Field(..., description="pending | running | succeeded | failed")
    retry_count: int
    not_before: Optional[datetime] = None
    result_json: Optional[str] = Field(None, description="Result payload or error document")
    error_message: Optional[str] = None
    error_class: Optional[str] = Field(None, description="configuration | transient")
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExecutionSummary(BaseModel):
    total: int
    counts: dict[str, int] = Field(..., description="Executions per status")
    executions: list[ExecutionRead]
