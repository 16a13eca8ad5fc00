"""
ingestion.py - Pydantic schemas for the asynchronous ingestion path.

Connectors post scored messages; the API appends them to the ingestion
stream and returns immediately. The ingestion worker records a violation
for each scored message flagged as one and enqueues the sender for
behavioral analysis.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from securewatch.schemas.violation import ViolationCreate


class ScoredMessageEvent(BaseModel):
    """One processed message from a connector."""

    employee_id: int = Field(..., description="Sender")
    source: str = Field(..., min_length=1, description="Connector name (email, slack, teams, ...)")
    risk_score: Optional[float] = Field(None, ge=0, description="Opaque scorer output")
    violation: Optional[ViolationCreate] = Field(
        None, description="Present when the scorer flagged the message"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestBatchRequest(BaseModel):
    events: list[ScoredMessageEvent] = Field(..., min_length=1, max_length=1000)


class IngestBatchAccepted(BaseModel):
    status: str = Field("accepted", description="Always 'accepted' for 202")
    accepted_count: int
    stream: str
