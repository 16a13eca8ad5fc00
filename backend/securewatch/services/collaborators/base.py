"""
base.py - Outbound collaborator contracts.

Action handlers and the behavioral queue talk to the outside world only
through these interfaces. Stores backed by a table declare it in
`capability`; the dispatcher checks the capability registry before use and
degrades to logging when the table is missing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from securewatch.services.policy.types import SubjectSnapshot


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RestrictionOutcome:
    applied: bool  # False when an equal-or-broader restriction already exists
    restriction_id: Optional[int]
    expires_at: Optional[datetime]


@dataclass(frozen=True)
class AnalysisResult:
    risk_score: float
    findings: list[str] = field(default_factory=list)


class Collaborator(ABC):
    capability: Optional[str] = None  # Backing table, None when not table-backed


class MailTransport(Collaborator):
    @abstractmethod
    def send(self, recipients: Sequence[str], subject: str, body: str) -> DeliveryResult:
        """Deliver one message. Connection problems may raise instead of returning failure."""
        ...


class IncidentStore(Collaborator):
    capability = "incidents"

    @abstractmethod
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
        """
        Create an incident and return its id.

        Idempotent per source_execution_id: a retried execution gets the
        incident created by its earlier attempt.
        """
        ...


class RestrictionStore(Collaborator):
    capability = "employee_access_restrictions"

    @abstractmethod
    def set_access_restriction(
        self,
        employee_id: int,
        scope: str,
        expiry: Optional[datetime],
        *,
        service: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> RestrictionOutcome:
        ...


class MonitoringStore(Collaborator):
    capability = "employee_monitoring_settings"

    @abstractmethod
    def set_monitoring_level(
        self,
        employee_id: int,
        level: str,
        expiry: datetime,
        *,
        reason: Optional[str] = None,
    ) -> tuple[str, datetime]:
        """Upsert the subject's monitoring level. Returns the effective (level, expiry)."""
        ...


class DetailedLoggingStore(Collaborator):
    capability = "employee_logging_settings"

    @abstractmethod
    def enable_detailed_logging(
        self,
        employee_id: int,
        scopes: frozenset[str],
        expiry: datetime,
        *,
        reason: Optional[str] = None,
    ) -> datetime:
        """Upsert enhanced logging. scopes is a subset of network/files/communications."""
        ...


class NotificationStore(Collaborator):
    capability = "system_notifications"

    @abstractmethod
    def notify(
        self,
        roles: Sequence[str],
        title: str,
        message: str,
        priority: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list[int]:
        """Create one in-app notification per recipient role."""
        ...


class EmployeeDirectory(Collaborator):
    capability = "employees"

    @abstractmethod
    def get(self, employee_id: int) -> Optional[SubjectSnapshot]:
        ...

    @abstractmethod
    def management_contacts(self) -> list[str]:
        """Email addresses of active employees in a management role."""
        ...


class AuditTrail(Collaborator):
    capability = "activity_logs"

    @abstractmethod
    def record(
        self,
        *,
        employee_id: Optional[int],
        action_type: str,
        description: str,
        severity: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


class BehavioralAnalyzer(Collaborator):
    @abstractmethod
    def analyze(self, employee_id: int) -> AnalysisResult:
        ...


@dataclass
class Collaborators:
    """Everything a handler may call. Any member may be None (not deployed)."""

    mail: Optional[MailTransport] = None
    incidents: Optional[IncidentStore] = None
    restrictions: Optional[RestrictionStore] = None
    monitoring: Optional[MonitoringStore] = None
    detailed_logging: Optional[DetailedLoggingStore] = None
    notifications: Optional[NotificationStore] = None
    directory: Optional[EmployeeDirectory] = None
    audit: Optional[AuditTrail] = None
