"""
violations.py - Violation Service.

Inbound surface of the engine for the ingestion pipeline:

- record_violation(): persist, match and schedule synchronously, return the id
- enqueue_for_behavioral_analysis(): hand the employee to the batching queue
- update_status(): forward-only status lifecycle

INVARIANT: matching and scheduling failures are logged and never raised
to the caller. Only a failure to persist the violation itself is raised.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from securewatch.core.clock import utcnow
from securewatch.database import SessionLocal
from securewatch.models import Employee, Violation, ViolationSeverity, ViolationStatus
from securewatch.services.behavior.queue import BehavioralAnalysisQueue
from securewatch.services.policy.matcher import PolicyMatcher
from securewatch.services.policy.scheduler import ExecutionScheduler
from securewatch.services.policy.types import ViolationSnapshot

logger = logging.getLogger(__name__)


class UnknownEmployeeError(ValueError):
    pass


class ViolationNotFound(LookupError):
    pass


class StatusTransitionError(ValueError):
    """Violation status may only move forward."""


@dataclass(frozen=True)
class RecordResult:
    violation_id: str
    created: bool
    scheduled_executions: list[int] = field(default_factory=list)


class ViolationService:
    def __init__(
        self,
        matcher: PolicyMatcher,
        scheduler: ExecutionScheduler,
        behavior_queue: Optional[BehavioralAnalysisQueue] = None,
        session_factory: sessionmaker = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.matcher = matcher
        self.scheduler = scheduler
        self.behavior_queue = behavior_queue
        self._session_factory = session_factory
        self._clock = clock

    def record_violation(
        self,
        employee_id: int,
        type: str,
        severity: str | ViolationSeverity,
        description: str,
        metadata: Optional[dict[str, Any]] = None,
        violation_id: Optional[str] = None,
    ) -> RecordResult:
        """
        Record a violation, then match and schedule responses for it.

        Resubmitting a known violation_id does not create a second record;
        it is matched again and the scheduler's deduplication decides
        whether new executions are created.

        Raises:
            UnknownEmployeeError: employee_id does not exist
            ValueError: severity is not a known severity
        """
        snapshot, created = self._persist(
            employee_id,
            type,
            ViolationSeverity.parse(severity),
            description,
            metadata or {},
            violation_id or str(uuid.uuid4()),
        )

        scheduled: list[int] = []
        try:
            matches = self.matcher.match(snapshot)
            scheduled = self.scheduler.schedule(snapshot, matches)
        except Exception as e:
            logger.error(
                "Policy evaluation for violation %s failed: %s",
                snapshot.id,
                e,
                exc_info=True,
            )

        return RecordResult(snapshot.id, created, scheduled)

    def _persist(
        self,
        employee_id: int,
        type: str,
        severity: ViolationSeverity,
        description: str,
        metadata: dict[str, Any],
        violation_id: str,
    ) -> tuple[ViolationSnapshot, bool]:
        db = self._session_factory()
        try:
            existing = db.get(Violation, violation_id)
            if existing is not None:
                logger.info("Violation %s already recorded; resubmission", violation_id)
                return ViolationSnapshot.from_row(existing), False

            if db.get(Employee, employee_id) is None:
                raise UnknownEmployeeError(f"Unknown employee: {employee_id}")

            row = Violation(
                id=violation_id,
                employee_id=employee_id,
                type=type,
                severity=severity.value,
                description=description,
                metadata_json=json.dumps(metadata, default=str),
                status=ViolationStatus.ACTIVE.value,
                created_at=self._clock(),
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # Concurrent submission of the same id won the insert
                db.rollback()
                existing = db.get(Violation, violation_id)
                if existing is None:
                    raise
                return ViolationSnapshot.from_row(existing), False

            logger.info(
                "Violation %s recorded: employee=%s type=%s severity=%s",
                violation_id,
                employee_id,
                type,
                severity.value,
            )
            return ViolationSnapshot.from_row(row), True
        finally:
            db.close()

    def enqueue_for_behavioral_analysis(self, employee_id: int, source: str) -> bool:
        if self.behavior_queue is None:
            return False
        return self.behavior_queue.enqueue(employee_id, source)

    def update_status(self, violation_id: str, status: str | ViolationStatus) -> ViolationSnapshot:
        """
        Move a violation forward in its lifecycle. Never re-triggers matching.

        Raises:
            ViolationNotFound: unknown violation_id
            StatusTransitionError: the new status is behind the current one
        """
        target = ViolationStatus(status)
        db = self._session_factory()
        try:
            row = db.get(Violation, violation_id)
            if row is None:
                raise ViolationNotFound(violation_id)
            current = ViolationStatus(row.status)
            if target.rank < current.rank:
                raise StatusTransitionError(
                    f"Cannot move violation from {current.value} back to {target.value}"
                )
            if target is not current:
                row.status = target.value
                row.updated_at = self._clock()
                db.commit()
                logger.info("Violation %s: %s -> %s", violation_id, current.value, target.value)
            return ViolationSnapshot.from_row(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
