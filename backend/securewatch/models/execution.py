"""
execution.py - Durable unit of response work.

One row per (matched policy, action) for a violation. Created by the
Execution Scheduler in `pending`, mutated only by the Action Dispatcher
through compare-and-set status transitions, never deleted (audit trail).
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from securewatch.database import Base
from securewatch.models.enums import ExecutionStatus


class PolicyExecution(Base):
    __tablename__ = "policy_executions"

    id = Column(Integer, primary_key=True)
    policy_id = Column(Integer, ForeignKey("security_policies.id"), nullable=False, index=True)
    violation_id = Column(String(36), ForeignKey("violations.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    action_id = Column(
        Integer, ForeignKey("policy_actions.id", ondelete="SET NULL"), nullable=True
    )

    # Snapshot of the action at scheduling time; later policy edits do not
    # change work already scheduled.
    action_type = Column(String(50), nullable=False)
    action_config = Column(Text, nullable=False, default="{}")
    execution_order = Column(Integer, nullable=False, default=1)

    status = Column(String(20), nullable=False, default=ExecutionStatus.PENDING.value)
    not_before = Column(DateTime, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    result_json = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    error_class = Column(String(30), nullable=True)

    created_at = Column(DateTime, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_policy_executions_due", "status", "not_before", "created_at"),
        Index("ix_policy_executions_violation_policy", "violation_id", "policy_id"),
    )
