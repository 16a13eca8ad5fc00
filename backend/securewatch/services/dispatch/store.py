"""
store.py - Execution state transitions.

Every mutation of a PolicyExecution row goes through a compare-and-set
UPDATE guarded by the expected current status. This is the only mutual
exclusion between dispatcher workers:

    pending --claim--> running --complete--> succeeded
                       running --fail------> failed
                       running --reschedule-> pending   (retry edge)

Terminal rows are never matched by any guard, so they are never left.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import sessionmaker

from securewatch.core.clock import utcnow
from securewatch.core.errors import ActionError
from securewatch.database import SessionLocal
from securewatch.models import (
    Employee,
    ExecutionStatus,
    PolicyExecution,
    SecurityPolicy,
    Violation,
)
from securewatch.services.policy.types import SubjectSnapshot, ViolationSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionJob:
    """Snapshot of a claimed execution, owned by the dispatcher until terminal."""

    id: int
    policy_id: int
    policy_name: str
    violation_id: str
    employee_id: int
    action_type: str
    action_config: str
    execution_order: int
    retry_count: int


class ExecutionStore:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def due_ids(self, limit: int) -> list[int]:
        """Pending executions whose not_before has passed, oldest first."""
        now = self._clock()
        db = self._session_factory()
        try:
            rows = (
                db.query(PolicyExecution.id)
                .filter(
                    PolicyExecution.status == ExecutionStatus.PENDING.value,
                    or_(PolicyExecution.not_before.is_(None), PolicyExecution.not_before <= now),
                )
                .order_by(PolicyExecution.created_at.asc(), PolicyExecution.id.asc())
                .limit(limit)
                .all()
            )
            return [int(r.id) for r in rows]
        finally:
            db.close()

    def claim(self, execution_id: int) -> Optional[ExecutionJob]:
        """
        Atomically move pending -> running.

        Returns:
            The claimed job, or None if another worker won the race
        """
        db = self._session_factory()
        try:
            claimed = db.execute(
                update(PolicyExecution)
                .where(
                    PolicyExecution.id == execution_id,
                    PolicyExecution.status == ExecutionStatus.PENDING.value,
                )
                .values(status=ExecutionStatus.RUNNING.value, started_at=self._clock())
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
            if claimed != 1:
                logger.debug("Execution %s already claimed, skipping", execution_id)
                return None

            row = db.get(PolicyExecution, execution_id)
            policy = db.get(SecurityPolicy, row.policy_id)
            return ExecutionJob(
                id=int(row.id),
                policy_id=int(row.policy_id),
                policy_name=policy.name if policy else f"policy-{row.policy_id}",
                violation_id=str(row.violation_id),
                employee_id=int(row.employee_id),
                action_type=str(row.action_type),
                action_config=row.action_config or "{}",
                execution_order=int(row.execution_order),
                retry_count=int(row.retry_count or 0),
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def load_context(
        self, job: ExecutionJob
    ) -> tuple[Optional[ViolationSnapshot], Optional[SubjectSnapshot]]:
        db = self._session_factory()
        try:
            violation = db.get(Violation, job.violation_id)
            employee = db.get(Employee, job.employee_id)
            return (
                ViolationSnapshot.from_row(violation) if violation else None,
                SubjectSnapshot.from_row(employee) if employee else None,
            )
        finally:
            db.close()

    def complete(self, job: ExecutionJob, result: dict[str, Any]) -> bool:
        return self._transition(
            job.id,
            ExecutionStatus.RUNNING,
            status=ExecutionStatus.SUCCEEDED.value,
            result_json=json.dumps(result, default=str),
            error_message=None,
            error_class=None,
            completed_at=self._clock(),
        )

    def fail(self, job: ExecutionJob, error: ActionError, retry_count: int) -> bool:
        return self._transition(
            job.id,
            ExecutionStatus.RUNNING,
            status=ExecutionStatus.FAILED.value,
            retry_count=retry_count,
            result_json=json.dumps(error.to_dict(), default=str),
            error_message=error.message,
            error_class=error.classification.value,
            completed_at=self._clock(),
        )

    def reschedule(
        self,
        job: ExecutionJob,
        error: ActionError,
        retry_count: int,
        not_before: datetime,
    ) -> bool:
        return self._transition(
            job.id,
            ExecutionStatus.RUNNING,
            status=ExecutionStatus.PENDING.value,
            retry_count=retry_count,
            not_before=not_before,
            error_message=error.message,
            error_class=error.classification.value,
            started_at=None,
        )

    def recover_stale(self, older_than: timedelta, max_retries: int) -> int:
        """
        Return executions stuck in `running` (crashed worker) to `pending`.

        The interrupted run counts as an attempt; rows that have used up
        their attempts are failed instead.
        """
        cutoff = self._clock() - older_than
        now = self._clock()
        stale = (
            PolicyExecution.status == ExecutionStatus.RUNNING.value,
            PolicyExecution.started_at < cutoff,
        )
        db = self._session_factory()
        try:
            exhausted = db.execute(
                update(PolicyExecution)
                .where(*stale, PolicyExecution.retry_count + 1 >= max_retries)
                .values(
                    status=ExecutionStatus.FAILED.value,
                    retry_count=PolicyExecution.retry_count + 1,
                    error_message="Interrupted while running; retries exhausted",
                    error_class="transient",
                    completed_at=now,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            requeued = db.execute(
                update(PolicyExecution)
                .where(*stale)
                .values(
                    status=ExecutionStatus.PENDING.value,
                    retry_count=PolicyExecution.retry_count + 1,
                    not_before=now,
                    started_at=None,
                    error_message="Interrupted while running; requeued",
                    error_class="transient",
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if exhausted or requeued:
            logger.warning(
                "Recovered stale executions: %d requeued, %d failed", requeued, exhausted
            )
        return requeued + exhausted

    def _transition(self, execution_id: int, expected: ExecutionStatus, **values: Any) -> bool:
        db = self._session_factory()
        try:
            changed = db.execute(
                update(PolicyExecution)
                .where(
                    PolicyExecution.id == execution_id,
                    PolicyExecution.status == expected.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if changed != 1:
            logger.error(
                "Execution %s was not %s; transition to %s dropped",
                execution_id,
                expected.value,
                values.get("status"),
            )
            return False
        return True
