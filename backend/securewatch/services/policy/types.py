"""
types.py - Immutable snapshots passed between matcher, scheduler and dispatcher.

These are data transfer objects, NOT ORM models. Components hand snapshots
to each other so that no ORM instance crosses a session boundary.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from securewatch.models import Employee, SecurityPolicy, Violation
from securewatch.models.enums import ViolationSeverity
from securewatch.services.policy.conditions import Condition


@dataclass(frozen=True)
class ViolationSnapshot:
    id: str
    employee_id: int
    type: str
    severity: ViolationSeverity
    description: str
    metadata: dict[str, Any]
    status: str
    created_at: datetime

    @property
    def risk_score(self) -> float | None:
        # Connectors emit either spelling
        score = self.metadata.get("risk_score", self.metadata.get("riskScore"))
        try:
            return float(score) if score is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def regulatory_tags(self) -> tuple[str, ...]:
        tags = self.metadata.get("regulatory_tags") or self.metadata.get("tags") or ()
        if isinstance(tags, str):
            return (tags,)
        return tuple(str(t) for t in tags)

    @classmethod
    def from_row(cls, row: Violation) -> "ViolationSnapshot":
        return cls(
            id=str(row.id),
            employee_id=int(row.employee_id),
            type=str(row.type),
            severity=ViolationSeverity.parse(row.severity),
            description=str(row.description),
            metadata=json.loads(row.metadata_json) if row.metadata_json else {},
            status=str(row.status),
            created_at=row.created_at,
        )


@dataclass(frozen=True)
class SubjectSnapshot:
    id: int
    name: str
    email: str | None
    department: str | None
    role: str | None
    risk_score: float | None
    is_active: bool

    @classmethod
    def from_row(cls, row: Employee) -> "SubjectSnapshot":
        return cls(
            id=int(row.id),
            name=str(row.name),
            email=row.email,
            department=row.department,
            role=row.role,
            risk_score=row.risk_score,
            is_active=bool(row.is_active),
        )


@dataclass(frozen=True)
class ActionSpec:
    id: int
    action_type: str
    config: dict[str, Any]
    execution_order: int
    delay_minutes: int = 0


@dataclass(frozen=True)
class PolicySnapshot:
    id: int
    name: str
    priority: int
    scope: str
    target_type: str | None
    target_id: str | None
    logical_operator: str
    conditions: tuple[Condition, ...] = ()
    actions: tuple[ActionSpec, ...] = ()

    @classmethod
    def from_row(cls, row: SecurityPolicy) -> "PolicySnapshot":
        return cls(
            id=int(row.id),
            name=str(row.name),
            priority=int(row.priority),
            scope=str(row.scope),
            target_type=row.target_type,
            target_id=row.target_id,
            logical_operator=str(row.logical_operator),
            conditions=tuple(
                Condition(field=c.field, operator=c.operator, value=c.value)
                for c in row.conditions
            ),
            actions=tuple(
                ActionSpec(
                    id=int(a.id),
                    action_type=str(a.action_type),
                    config=json.loads(a.action_config) if a.action_config else {},
                    execution_order=int(a.execution_order),
                    delay_minutes=int(a.delay_minutes or 0),
                )
                for a in row.actions
                if a.is_enabled
            ),
        )


@dataclass(frozen=True)
class PolicyMatch:
    policy: PolicySnapshot
    matched_conditions: tuple[Condition, ...] = field(default_factory=tuple)
