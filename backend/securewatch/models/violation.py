"""
violation.py - Violation model.

Violations are facts recorded on behalf of the ingestion/scoring pipeline.
Only the status column is mutable (Active -> Investigating -> Resolved);
status changes never re-trigger policy matching.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from securewatch.database import Base
from securewatch.models.enums import ViolationStatus


class Violation(Base):
    __tablename__ = "violations"

    id = Column(String(36), primary_key=True)  # UUID string, caller-suppliable
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    type = Column(String(100), nullable=False, index=True)
    severity = Column(String(20), nullable=False, index=True)  # ViolationSeverity value
    description = Column(Text, nullable=False)
    metadata_json = Column(Text, nullable=True)  # risk_score, source, regulatory_tags, ...
    status = Column(String(20), nullable=False, default=ViolationStatus.ACTIVE.value)
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=True)

    employee = relationship("Employee", back_populates="violations")

    __table_args__ = (
        Index("ix_violations_employee_created", "employee_id", "created_at"),
    )
