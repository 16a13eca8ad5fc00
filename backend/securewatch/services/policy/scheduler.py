"""
scheduler.py - Execution Scheduler.

Turns policy matches into durable `pending` executions, one per enabled
action, in declared action order.

TRANSACTION BOUNDARIES:
- One transaction per matched policy: a policy's actions are scheduled
  all-or-nothing
- Policies are independent: a failure scheduling one policy is logged and
  does not roll back the others

DEDUPLICATION:
- When enabled, a policy that already has executions for the violation is
  skipped, so re-ingesting the same violation id schedules nothing new
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy import exists
from sqlalchemy.orm import sessionmaker

from securewatch.config import settings
from securewatch.core.clock import utcnow
from securewatch.database import SessionLocal
from securewatch.models import ExecutionStatus, PolicyExecution
from securewatch.services.policy.types import PolicyMatch, ViolationSnapshot

logger = logging.getLogger(__name__)


class ExecutionScheduler:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        deduplicate: bool = settings.SCHEDULER_DEDUPLICATE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.deduplicate = deduplicate
        self._clock = clock

    def schedule(
        self,
        violation: ViolationSnapshot,
        matches: Iterable[PolicyMatch],
    ) -> list[int]:
        """
        Create pending executions for every enabled action of every match.

        Returns:
            Ids of the executions created by this call (empty when every
            policy was already scheduled for this violation)
        """
        created: list[int] = []
        for match in matches:
            try:
                created.extend(self._schedule_policy(violation, match))
            except Exception as e:
                logger.error(
                    "Scheduling policy '%s' for violation %s failed: %s",
                    match.policy.name,
                    violation.id,
                    e,
                    exc_info=True,
                )
        return created

    def _schedule_policy(self, violation: ViolationSnapshot, match: PolicyMatch) -> list[int]:
        policy = match.policy
        if not policy.actions:
            logger.info("Policy '%s' matched but has no enabled actions", policy.name)
            return []

        db = self._session_factory()
        try:
            if self.deduplicate and self._already_scheduled(db, violation.id, policy.id):
                logger.info(
                    "Policy '%s' already scheduled for violation %s, skipping",
                    policy.name,
                    violation.id,
                )
                return []

            now = self._clock()
            rows = []
            for action in sorted(policy.actions, key=lambda a: a.execution_order):
                not_before = now + timedelta(minutes=action.delay_minutes) if action.delay_minutes else now
                row = PolicyExecution(
                    policy_id=policy.id,
                    violation_id=violation.id,
                    employee_id=violation.employee_id,
                    action_id=action.id,
                    action_type=action.action_type,
                    action_config=json.dumps(action.config, sort_keys=True),
                    execution_order=action.execution_order,
                    status=ExecutionStatus.PENDING.value,
                    not_before=not_before,
                    retry_count=0,
                    created_at=now,
                )
                db.add(row)
                rows.append(row)

            db.commit()
            ids = [int(row.id) for row in rows]
            logger.info(
                "Scheduled %d action(s) for policy '%s' on violation %s: %s",
                len(ids),
                policy.name,
                violation.id,
                ids,
            )
            return ids
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _already_scheduled(db, violation_id: str, policy_id: int) -> bool:
        return bool(
            db.query(
                exists().where(
                    PolicyExecution.violation_id == violation_id,
                    PolicyExecution.policy_id == policy_id,
                )
            ).scalar()
        )
