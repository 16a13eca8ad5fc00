"""
test_concurrent_side_effects.py - Per-employee stores under concurrent writers.

Invariants:
1. Two writers that both find no row for an employee end with one row,
   and both calls succeed
2. The losing writer takes the extend path against the winner's row
3. Two increase_monitoring executions dispatched in parallel both succeed

A Barrier on the row constructor holds both writers until each has read
"no row", which forces the insert collision on every run.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from conftest import get_execution, make_employee, make_policy, make_violation, schedule_for
from securewatch.models import DetailedLoggingSetting, MonitoringSetting
from securewatch.services.collaborators.sql import SqlDetailedLoggingStore, SqlMonitoringStore


def gate_constructor(monkeypatch, model, parties=2):
    """Block each construction of `model` until `parties` threads have arrived."""
    barrier = threading.Barrier(parties, timeout=5)
    original = model.__init__

    def gated(self, *args, **kwargs):
        barrier.wait()
        original(self, *args, **kwargs)

    monkeypatch.setattr(model, "__init__", gated)
    return barrier


def run_together(*calls):
    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        futures = [pool.submit(call) for call in calls]
        return [f.result(timeout=10) for f in futures]


def all_rows(session_factory, model):
    db = session_factory()
    try:
        return db.query(model).all()
    finally:
        db.close()


@pytest.fixture
def employee_id(session_factory):
    return make_employee(session_factory)


class TestMonitoringRace:
    """1 + 2. Concurrent first-time monitoring writes converge on one row."""

    def test_both_writers_succeed(self, monkeypatch, session_factory, clock, employee_id):
        store = SqlMonitoringStore(session_factory, clock=clock)
        gate_constructor(monkeypatch, MonitoringSetting)
        short = clock.now + timedelta(hours=4)
        long = clock.now + timedelta(hours=24)

        results = run_together(
            lambda: store.set_monitoring_level(employee_id, "maximum", short),
            lambda: store.set_monitoring_level(employee_id, "high", long),
        )

        (setting,) = all_rows(session_factory, MonitoringSetting)
        assert setting.end_time == long
        assert setting.monitoring_level == "maximum"
        assert len(results) == 2

    def test_sequential_reapply_unaffected(self, session_factory, clock, employee_id):
        store = SqlMonitoringStore(session_factory, clock=clock)
        expiry = clock.now + timedelta(hours=8)

        assert store.set_monitoring_level(employee_id, "high", expiry) == ("high", expiry)
        assert store.set_monitoring_level(employee_id, "low", expiry) == ("high", expiry)


class TestDetailedLoggingRace:
    """1 + 2. Concurrent first-time logging writes converge on one row."""

    def test_both_writers_succeed(self, monkeypatch, session_factory, clock, employee_id):
        store = SqlDetailedLoggingStore(session_factory, clock=clock)
        gate_constructor(monkeypatch, DetailedLoggingSetting)
        short = clock.now + timedelta(hours=12)
        long = clock.now + timedelta(hours=48)

        expiries = run_together(
            lambda: store.enable_detailed_logging(employee_id, frozenset({"network"}), short),
            lambda: store.enable_detailed_logging(employee_id, frozenset({"files"}), long),
        )

        (setting,) = all_rows(session_factory, DetailedLoggingSetting)
        assert setting.end_time == long
        assert long in expiries


class TestParallelDispatch:
    """3. Sibling executions writing the same employee row both succeed."""

    def test_two_monitoring_executions(
        self, monkeypatch, session_factory, clock, make_dispatcher, employee_id
    ):
        make_policy(session_factory, "watch-a", actions=[("increase_monitoring", {"duration_hours": 6})])
        make_policy(
            session_factory,
            "watch-b",
            actions=[("increase_monitoring", {"monitoring_level": "maximum", "duration_hours": 12})],
        )
        violation = make_violation(session_factory, employee_id, clock.now)
        ids = schedule_for(session_factory, clock, violation)
        assert len(ids) == 2
        gate_constructor(monkeypatch, MonitoringSetting)

        stats = make_dispatcher(max_workers=2).run_once()

        rows = [get_execution(session_factory, i) for i in ids]
        assert [(r.status, r.error_message) for r in rows] == [("succeeded", None)] * 2
        assert stats.claimed == 2
        (setting,) = all_rows(session_factory, MonitoringSetting)
        assert setting.monitoring_level == "maximum"
        assert setting.end_time == clock.now + timedelta(hours=12)
