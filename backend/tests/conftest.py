"""
Test configuration and fixtures.

Test strategy:
- A fresh SQLite database file per test (tmp_path), so dispatcher worker
  threads get real, independent connections
- Components receive the test session factory and a frozen clock
- Mail transport and behavioral analyzer are in-memory fakes
"""

import json
import os
import sys
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Point the default engine at an in-memory database BEFORE securewatch.config
# is imported; tests build their own engines on top of that.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("BEHAVIOR_ANALYZER_URL", None)

from sqlalchemy.orm import sessionmaker

from securewatch.database import Base, make_engine
from securewatch.models import (
    Employee,
    PolicyAction,
    PolicyCondition,
    SecurityPolicy,
    Violation,
)
from securewatch.services.collaborators.base import (
    AnalysisResult,
    BehavioralAnalyzer,
    DeliveryResult,
    MailTransport,
)
from securewatch.services.policy.types import ViolationSnapshot

CORE_TABLES = (
    "employees",
    "violations",
    "security_policies",
    "policy_conditions",
    "policy_actions",
    "policy_executions",
)


class FrozenClock:
    """Injectable clock; tests move time explicitly."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMailTransport(MailTransport):
    def __init__(self, fail: bool = False, error: Exception | None = None) -> None:
        self.sent: list[tuple[list[str], str, str]] = []
        self.fail = fail
        self.error = error

    def send(self, recipients, subject, body):
        if self.error is not None:
            raise self.error
        self.sent.append((list(recipients), subject, body))
        if self.fail:
            return DeliveryResult(False, error="mailbox unavailable")
        return DeliveryResult(True, message_id=f"<msg-{len(self.sent)}@test>")


class FakeAnalyzer(BehavioralAnalyzer):
    def __init__(self, failing: set[int] | None = None, score: float = 42.0) -> None:
        self.calls: list[int] = []
        self.failing = failing or set()
        self.score = score

    def analyze(self, employee_id):
        self.calls.append(employee_id)
        if employee_id in self.failing:
            raise ConnectionError(f"analyzer unreachable for {employee_id}")
        return AnalysisResult(risk_score=self.score, findings=["after-hours activity"])


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'securewatch.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def core_only_engine(tmp_path):
    """Database where only the engine's own tables were migrated."""
    eng = make_engine(f"sqlite:///{tmp_path / 'core.db'}")
    Base.metadata.create_all(
        bind=eng, tables=[Base.metadata.tables[name] for name in CORE_TABLES]
    )
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def clock():
    # A Tuesday afternoon, inside business hours
    return FrozenClock(datetime(2024, 3, 12, 14, 0, 0))


@pytest.fixture
def mail():
    return FakeMailTransport()


def make_employee(session_factory, **kwargs) -> int:
    db = session_factory()
    try:
        employee = Employee(
            name=kwargs.pop("name", "Jane Doe"),
            email=kwargs.pop("email", "jane.doe@company.com"),
            department=kwargs.pop("department", "Finance"),
            role=kwargs.pop("role", "analyst"),
            **kwargs,
        )
        db.add(employee)
        db.commit()
        return employee.id
    finally:
        db.close()


def make_policy(
    session_factory,
    name: str,
    conditions=(),
    actions=(),
    **kwargs,
) -> int:
    """
    Create a policy.

    conditions: (field, operator, value) tuples
    actions: (action_type, config) or (action_type, config, delay_minutes) tuples
    """
    db = session_factory()
    try:
        policy = SecurityPolicy(name=name, **kwargs)
        policy.conditions = [
            PolicyCondition(field=f, operator=op, value=str(v), condition_order=i)
            for i, (f, op, v) in enumerate(conditions, start=1)
        ]
        policy.actions = [
            PolicyAction(
                action_type=a[0],
                action_config=json.dumps(a[1]),
                execution_order=i,
                delay_minutes=a[2] if len(a) > 2 else 0,
            )
            for i, a in enumerate(actions, start=1)
        ]
        db.add(policy)
        db.commit()
        return policy.id
    finally:
        db.close()


def make_violation(
    session_factory,
    employee_id: int,
    created_at: datetime,
    violation_id: str = "v-0001",
    severity: str = "High",
    type: str = "policy_breach",
    metadata: dict | None = None,
) -> ViolationSnapshot:
    db = session_factory()
    try:
        row = Violation(
            id=violation_id,
            employee_id=employee_id,
            type=type,
            severity=severity,
            description="Sensitive data shared externally",
            metadata_json=json.dumps(metadata or {}),
            created_at=created_at,
        )
        db.add(row)
        db.commit()
        return ViolationSnapshot.from_row(row)
    finally:
        db.close()


def schedule_for(session_factory, clock, violation, deduplicate=True) -> list[int]:
    """Run matcher + scheduler for a stored violation, as the service does."""
    from securewatch.services.policy.matcher import PolicyMatcher
    from securewatch.services.policy.scheduler import ExecutionScheduler

    matcher = PolicyMatcher(session_factory, clock=clock)
    scheduler = ExecutionScheduler(session_factory, deduplicate=deduplicate, clock=clock)
    return scheduler.schedule(violation, matcher.match(violation))


def get_execution(session_factory, execution_id):
    from securewatch.models import PolicyExecution

    db = session_factory()
    try:
        return db.get(PolicyExecution, execution_id)
    finally:
        db.close()


@pytest.fixture
def make_dispatcher(engine, session_factory, clock, mail):
    """
    Factory for ActionDispatcher wired to SQL stores and the fake mail.

    Pools are shut down at teardown.
    """
    from securewatch.config import settings
    from securewatch.runtime import build_collaborators
    from securewatch.services.dispatch.capabilities import CapabilityRegistry
    from securewatch.services.dispatch.dispatcher import ActionDispatcher
    from securewatch.services.dispatch.store import ExecutionStore

    created = []

    def _make(capabilities=None, transport=None, **kwargs):
        kwargs.setdefault("max_retries", 3)
        kwargs.setdefault("retry_backoff_seconds", 30.0)
        kwargs.setdefault("max_workers", 2)
        kwargs.setdefault("timeout_for", lambda action_type: 5.0)
        dispatcher = ActionDispatcher(
            ExecutionStore(session_factory, clock=clock),
            build_collaborators(
                session_factory,
                settings,
                mail=transport if transport is not None else mail,
                clock=clock,
            ),
            capabilities or CapabilityRegistry.from_engine(engine),
            clock=clock,
            **kwargs,
        )
        created.append(dispatcher)
        return dispatcher

    yield _make
    for dispatcher in created:
        dispatcher.stop()
