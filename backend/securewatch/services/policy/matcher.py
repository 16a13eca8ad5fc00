"""
matcher.py - Policy Matcher.

Finds every active policy whose scope covers the violation's subject and
whose combined conditions evaluate true.

Matching is READ-ONLY and idempotent: it may be called any number of times
for the same violation. Deduplication of downstream work is the
scheduler's job.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import func
from sqlalchemy.orm import Session as DBSession, selectinload, sessionmaker

from securewatch.config import settings
from securewatch.core.clock import utcnow
from securewatch.database import SessionLocal
from securewatch.models import Employee, SecurityPolicy, Violation
from securewatch.models.enums import PolicyScope, TargetType
from securewatch.services.policy.conditions import ViolationContext, evaluate_all
from securewatch.services.policy.types import (
    PolicyMatch,
    PolicySnapshot,
    SubjectSnapshot,
    ViolationSnapshot,
)

logger = logging.getLogger(__name__)


def policy_applies_to(policy: PolicySnapshot, subject: SubjectSnapshot | None) -> bool:
    """Scope check: global always, group by department/role, user by id or email."""
    if policy.scope == PolicyScope.GLOBAL.value:
        return True
    if subject is None or not policy.target_id:
        return False

    if policy.scope == PolicyScope.GROUP.value:
        if policy.target_type == TargetType.DEPARTMENT.value:
            return subject.department == policy.target_id
        if policy.target_type == TargetType.ROLE.value:
            return subject.role == policy.target_id
        return False

    if policy.scope == PolicyScope.USER.value:
        return policy.target_id in (str(subject.id), subject.email)

    return False


class PolicyMatcher:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        frequency_window_hours: int = settings.FREQUENCY_WINDOW_HOURS,
        business_hours: tuple[int, int] = (
            settings.BUSINESS_HOURS_START,
            settings.BUSINESS_HOURS_END,
        ),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._frequency_window = timedelta(hours=frequency_window_hours)
        self._business_hours = business_hours
        self._clock = clock

    def load_active_policies(self, db: DBSession) -> list[PolicySnapshot]:
        """Active policies, lowest priority value first (audit ordering only)."""
        rows = (
            db.query(SecurityPolicy)
            .options(
                selectinload(SecurityPolicy.conditions),
                selectinload(SecurityPolicy.actions),
            )
            .filter(SecurityPolicy.is_active.is_(True))
            .order_by(SecurityPolicy.priority.asc(), SecurityPolicy.id.asc())
            .all()
        )
        return [PolicySnapshot.from_row(row) for row in rows]

    def build_context(
        self,
        db: DBSession,
        violation: ViolationSnapshot,
        subject: SubjectSnapshot | None,
    ) -> ViolationContext:
        window_start = violation.created_at - self._frequency_window
        frequency = (
            db.query(func.count(Violation.id))
            .filter(
                Violation.employee_id == violation.employee_id,
                Violation.created_at >= window_start,
                Violation.created_at <= violation.created_at,
            )
            .scalar()
        ) or 0

        start_hour, end_hour = self._business_hours
        hour = violation.created_at.hour

        return ViolationContext(
            violation_id=violation.id,
            employee_id=violation.employee_id,
            violation_type=violation.type,
            severity=violation.severity,
            description=violation.description,
            created_at=violation.created_at,
            risk_score=violation.risk_score,
            source=violation.metadata.get("source"),
            regulatory_tags=violation.regulatory_tags,
            metadata=violation.metadata,
            employee_risk_score=subject.risk_score if subject else None,
            employee_department=subject.department if subject else None,
            employee_role=subject.role if subject else None,
            frequency=int(frequency),
            outside_business_hours=not (start_hour <= hour < end_hour),
        )

    def match(self, violation: ViolationSnapshot) -> list[PolicyMatch]:
        """
        Evaluate all in-scope active policies against a violation.

        Returns:
            PolicyMatch per matching policy, in priority order, each carrying
            the conditions that evaluated true.
        """
        db = self._session_factory()
        try:
            employee = db.get(Employee, violation.employee_id)
            subject = SubjectSnapshot.from_row(employee) if employee else None
            if subject is None:
                logger.warning(
                    "Violation %s references unknown employee %s; only global policies apply",
                    violation.id,
                    violation.employee_id,
                )
            policies = self.load_active_policies(db)
            context = self.build_context(db, violation, subject)
        finally:
            db.close()

        matches: list[PolicyMatch] = []
        for policy in policies:
            if not policy_applies_to(policy, subject):
                continue
            matched, matched_conditions = evaluate_all(
                policy.conditions, policy.logical_operator, context
            )
            logger.debug(
                "Policy '%s' (%s, %d conditions) -> %s",
                policy.name,
                policy.logical_operator,
                len(policy.conditions),
                matched,
            )
            if matched:
                matches.append(
                    PolicyMatch(policy=policy, matched_conditions=tuple(matched_conditions))
                )

        logger.info(
            "Violation %s (%s/%s): %d of %d active policies matched",
            violation.id,
            violation.type,
            violation.severity.value,
            len(matches),
            len(policies),
        )
        return matches
