"""
sql.py - Relational implementations of the collaborator stores.

Each store opens its own short-lived session per call, so stores are safe
to share between dispatcher threads. All writes are upserts or guarded by
a uniqueness key so a retried execution never duplicates a side effect.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from securewatch.core.clock import utcnow
from securewatch.database import SessionLocal
from securewatch.models import (
    AccessRestriction,
    ActivityLog,
    DetailedLoggingSetting,
    Employee,
    Incident,
    MonitoringSetting,
    SystemNotification,
)
from securewatch.services.collaborators.base import (
    AuditTrail,
    DetailedLoggingStore,
    EmployeeDirectory,
    IncidentStore,
    MonitoringStore,
    NotificationStore,
    RestrictionOutcome,
    RestrictionStore,
)
from securewatch.services.policy.types import SubjectSnapshot

logger = logging.getLogger(__name__)

# Restriction scopes, narrowest first
RESTRICTION_BREADTH = {"specific_service": 1, "email": 2, "all": 3}

MONITORING_LEVEL_RANK = {"low": 1, "normal": 2, "high": 3, "maximum": 4}


class _SqlStore:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _upsert(self, apply: Callable[[Session], Any], store: str, employee_id: int) -> Any:
        """
        Run a read-then-write against a per-employee row and commit.

        Two workers can both read "no row" and both insert; the loser hits
        the unique key on employee_id. Its write is then re-applied once in
        a fresh session, where it takes the update path against the row the
        winner inserted.
        """
        for attempt in (1, 2):
            db = self._session_factory()
            try:
                outcome = apply(db)
                db.commit()
                return outcome
            except IntegrityError:
                db.rollback()
                if attempt == 2:
                    raise
                logger.info(
                    "Concurrent %s insert for employee %s; re-applying as update",
                    store,
                    employee_id,
                )
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()


class SqlEmployeeDirectory(_SqlStore, EmployeeDirectory):
    def __init__(self, *args: Any, management_roles: Sequence[str] = (), **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.management_roles = tuple(management_roles)

    def get(self, employee_id: int) -> Optional[SubjectSnapshot]:
        db = self._session_factory()
        try:
            row = db.get(Employee, employee_id)
            return SubjectSnapshot.from_row(row) if row else None
        finally:
            db.close()

    def management_contacts(self) -> list[str]:
        db = self._session_factory()
        try:
            rows = (
                db.query(Employee.email)
                .filter(
                    Employee.role.in_(self.management_roles),
                    Employee.is_active.is_(True),
                    Employee.email.isnot(None),
                )
                .order_by(Employee.id)
                .all()
            )
            return [r.email for r in rows]
        finally:
            db.close()


class SqlIncidentStore(_SqlStore, IncidentStore):
    def create_incident(
        self,
        *,
        employee_id: int,
        severity: str,
        title: str,
        description: str,
        escalation_level: str,
        violation_id: Optional[str] = None,
        policy_id: Optional[int] = None,
        source_execution_id: Optional[int] = None,
    ) -> int:
        db = self._session_factory()
        try:
            if source_execution_id is not None:
                existing = (
                    db.query(Incident)
                    .filter(Incident.source_execution_id == source_execution_id)
                    .one_or_none()
                )
                if existing is not None:
                    logger.info(
                        "Incident %s already exists for execution %s",
                        existing.incident_number,
                        source_execution_id,
                    )
                    return int(existing.id)

            now = self._clock()
            incident = Incident(
                incident_number=f"INC-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}",
                title=title,
                description=description,
                severity=severity,
                status="Open",
                escalation_level=escalation_level,
                employee_id=employee_id,
                violation_id=violation_id,
                policy_id=policy_id,
                source_execution_id=source_execution_id,
                created_at=now,
            )
            db.add(incident)
            db.commit()
            return int(incident.id)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class SqlMonitoringStore(_SqlStore, MonitoringStore):
    def set_monitoring_level(
        self,
        employee_id: int,
        level: str,
        expiry: datetime,
        *,
        reason: Optional[str] = None,
    ) -> tuple[str, datetime]:
        def apply(db: Session) -> tuple[str, datetime]:
            now = self._clock()
            effective_level, effective_expiry = level, expiry
            row = (
                db.query(MonitoringSetting)
                .filter(MonitoringSetting.employee_id == employee_id)
                .one_or_none()
            )
            if row is None:
                row = MonitoringSetting(employee_id=employee_id, start_time=now)
                db.add(row)
            elif row.enabled and row.end_time and row.end_time > now:
                # Re-applying while active extends, never shortens or downgrades
                effective_expiry = max(expiry, row.end_time)
                current_rank = MONITORING_LEVEL_RANK.get(row.monitoring_level, 0)
                if current_rank > MONITORING_LEVEL_RANK.get(level, 0):
                    effective_level = row.monitoring_level
            else:
                row.start_time = now

            row.monitoring_level = effective_level
            row.enabled = True
            row.end_time = effective_expiry
            row.reason = reason
            row.updated_at = now
            return effective_level, effective_expiry

        return self._upsert(apply, "monitoring", employee_id)


class SqlDetailedLoggingStore(_SqlStore, DetailedLoggingStore):
    def enable_detailed_logging(
        self,
        employee_id: int,
        scopes: frozenset[str],
        expiry: datetime,
        *,
        reason: Optional[str] = None,
    ) -> datetime:
        def apply(db: Session) -> datetime:
            now = self._clock()
            effective_expiry = expiry
            row = (
                db.query(DetailedLoggingSetting)
                .filter(DetailedLoggingSetting.employee_id == employee_id)
                .one_or_none()
            )
            if row is None:
                row = DetailedLoggingSetting(employee_id=employee_id, start_time=now)
                db.add(row)
            elif row.detailed_logging_enabled and row.end_time > now:
                effective_expiry = max(expiry, row.end_time)
            else:
                row.start_time = now

            row.detailed_logging_enabled = True
            row.include_network_activity = "network" in scopes
            row.include_file_access = "files" in scopes
            row.include_communications = "communications" in scopes
            row.end_time = effective_expiry
            row.reason = reason
            row.updated_at = now
            return effective_expiry

        return self._upsert(apply, "detailed logging", employee_id)


class SqlRestrictionStore(_SqlStore, RestrictionStore):
    def set_access_restriction(
        self,
        employee_id: int,
        scope: str,
        expiry: Optional[datetime],
        *,
        service: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> RestrictionOutcome:
        db = self._session_factory()
        try:
            now = self._clock()
            active = (
                db.query(AccessRestriction)
                .filter(
                    AccessRestriction.employee_id == employee_id,
                    AccessRestriction.is_active.is_(True),
                    or_(AccessRestriction.end_time.is_(None), AccessRestriction.end_time > now),
                )
                .all()
            )
            for existing in active:
                if self._covers(existing, scope, service, expiry):
                    logger.info(
                        "Employee %s already restricted (%s), not re-applying %s",
                        employee_id,
                        existing.restriction_type,
                        scope,
                    )
                    return RestrictionOutcome(False, int(existing.id), existing.end_time)

            restriction = AccessRestriction(
                employee_id=employee_id,
                restriction_type=scope,
                service=service,
                reason=reason,
                start_time=now,
                end_time=expiry,
                is_active=True,
            )
            db.add(restriction)

            if scope == "all":
                employee = db.get(Employee, employee_id)
                if employee is not None:
                    employee.is_active = False
                    employee.access_disabled_until = expiry

            db.commit()
            return RestrictionOutcome(True, int(restriction.id), expiry)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _covers(
        existing: AccessRestriction,
        scope: str,
        service: Optional[str],
        expiry: Optional[datetime],
    ) -> bool:
        """True when `existing` is at least as broad and lasts at least as long."""
        have = RESTRICTION_BREADTH.get(existing.restriction_type, 0)
        want = RESTRICTION_BREADTH.get(scope, 0)
        if have < want:
            return False
        if have == want == RESTRICTION_BREADTH["specific_service"] and existing.service != service:
            return False
        if existing.end_time is None:
            return True
        return expiry is not None and existing.end_time >= expiry


class SqlNotificationStore(_SqlStore, NotificationStore):
    def notify(
        self,
        roles: Sequence[str],
        title: str,
        message: str,
        priority: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list[int]:
        db = self._session_factory()
        try:
            now = self._clock()
            rows = [
                SystemNotification(
                    recipient_role=role,
                    notification_type="policy_alert",
                    priority=priority,
                    title=title,
                    message=message,
                    metadata_json=json.dumps(metadata or {}, default=str),
                    is_read=False,
                    created_at=now,
                )
                for role in roles
            ]
            db.add_all(rows)
            db.commit()
            return [int(r.id) for r in rows]
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class SqlAuditTrail(_SqlStore, AuditTrail):
    def record(
        self,
        *,
        employee_id: Optional[int],
        action_type: str,
        description: str,
        severity: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        db = self._session_factory()
        try:
            db.add(
                ActivityLog(
                    employee_id=employee_id,
                    action_type=action_type,
                    description=description,
                    source="policy_engine",
                    severity=severity,
                    metadata_json=json.dumps(metadata or {}, default=str),
                    created_at=self._clock(),
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
