"""
test_violation_service.py - End-to-end: record -> match -> schedule -> dispatch.

Components are wired through build_runtime, exactly as the API and the
dispatcher worker wire them, with fake mail and analyzer.
"""

from unittest.mock import MagicMock

import pytest

from conftest import FakeAnalyzer, get_execution, make_employee, make_policy
from securewatch.config import Settings
from securewatch.models import ExecutionStatus, PolicyExecution, Violation
from securewatch.runtime import build_runtime
from securewatch.services.violations import (
    StatusTransitionError,
    UnknownEmployeeError,
    ViolationNotFound,
)


@pytest.fixture
def cfg():
    return Settings(
        DATABASE_URL="sqlite://",
        DISPATCH_MAX_WORKERS=2,
        DISPATCH_RETRY_BACKOFF_SECONDS=1,
        BEHAVIOR_BATCH_SIZE=10,
    )


@pytest.fixture
def runtime(engine, session_factory, cfg, mail, clock):
    rt = build_runtime(
        engine, session_factory, cfg, mail=mail, analyzer=FakeAnalyzer(), clock=clock
    )
    yield rt
    rt.dispatcher.stop()


@pytest.fixture
def employee_id(session_factory):
    return make_employee(session_factory)


def count(session_factory, model):
    db = session_factory()
    try:
        return db.query(model).count()
    finally:
        db.close()


class TestEndToEnd:
    def test_high_risk_violation_emails_once(self, runtime, session_factory, employee_id, mail):
        """Violation{High, riskScore=85} vs policy riskScore > 80 -> one email to a@x."""
        make_policy(
            session_factory,
            "high-risk",
            conditions=[("risk_score", "greater_than", 80)],
            actions=[("email_alert", {"recipients": ["a@x"]})],
        )

        result = runtime.violations.record_violation(
            employee_id, "data_exfiltration", "High", "Upload to personal drive",
            metadata={"risk_score": 85},
        )

        assert result.created is True
        assert len(result.scheduled_executions) == 1
        stats = runtime.dispatcher.run_once()
        assert stats.count(ExecutionStatus.SUCCEEDED) == 1
        assert [sent[0] for sent in mail.sent] == [["a@x"]]
        assert get_execution(session_factory, result.scheduled_executions[0]).status == "succeeded"

    def test_critical_gdpr_policy_no_match(self, runtime, session_factory, employee_id):
        make_policy(
            session_factory,
            "critical-gdpr",
            conditions=[("severity", "equals", "Critical"), ("category", "contains", "GDPR")],
            actions=[("escalate_incident", {})],
        )

        result = runtime.violations.record_violation(employee_id, "GDPR", "High", "PII shared")

        assert result.scheduled_executions == []
        assert count(session_factory, PolicyExecution) == 0


class TestRecording:
    def test_generates_id_and_active_status(self, runtime, session_factory, employee_id, clock):
        result = runtime.violations.record_violation(employee_id, "policy_breach", "low", "x")

        db = session_factory()
        try:
            row = db.get(Violation, result.violation_id)
            assert row.severity == "Low"
            assert row.status == "Active"
            assert row.created_at == clock.now
        finally:
            db.close()

    def test_unknown_employee_rejected(self, runtime):
        with pytest.raises(UnknownEmployeeError):
            runtime.violations.record_violation(999, "policy_breach", "High", "x")

    def test_unknown_severity_rejected(self, runtime, employee_id):
        with pytest.raises(ValueError):
            runtime.violations.record_violation(employee_id, "policy_breach", "Severe", "x")

    def test_resubmission_is_idempotent(self, runtime, session_factory, employee_id):
        make_policy(session_factory, "all", actions=[("log_detailed_activity", {})])

        first = runtime.violations.record_violation(
            employee_id, "policy_breach", "High", "x", violation_id="v-fixed"
        )
        second = runtime.violations.record_violation(
            employee_id, "policy_breach", "High", "x", violation_id="v-fixed"
        )

        assert first.created is True
        assert second.created is False
        assert second.scheduled_executions == []
        assert count(session_factory, Violation) == 1
        assert count(session_factory, PolicyExecution) == 1

    def test_resubmission_without_dedup_schedules_again(
        self, engine, session_factory, mail, clock, employee_id
    ):
        cfg = Settings(DATABASE_URL="sqlite://", SCHEDULER_DEDUPLICATE=False)
        rt = build_runtime(engine, session_factory, cfg, mail=mail, clock=clock)
        make_policy(session_factory, "all", actions=[("log_detailed_activity", {})])
        try:
            for _ in range(2):
                rt.violations.record_violation(
                    employee_id, "policy_breach", "High", "x", violation_id="v-fixed"
                )
        finally:
            rt.dispatcher.stop()

        assert count(session_factory, PolicyExecution) == 2

    def test_matcher_failure_does_not_fail_recording(self, runtime, session_factory, employee_id, caplog):
        runtime.violations.matcher = MagicMock()
        runtime.violations.matcher.match.side_effect = RuntimeError("policy table unreadable")

        result = runtime.violations.record_violation(employee_id, "policy_breach", "High", "x")

        assert result.created is True
        assert result.scheduled_executions == []
        assert count(session_factory, Violation) == 1
        assert "Policy evaluation for violation" in caplog.text


class TestStatus:
    def test_forward_transitions(self, runtime, employee_id):
        vid = runtime.violations.record_violation(employee_id, "t", "High", "x").violation_id

        assert runtime.violations.update_status(vid, "Investigating").status == "Investigating"
        # Same status is a no-op
        assert runtime.violations.update_status(vid, "Investigating").status == "Investigating"
        assert runtime.violations.update_status(vid, "Resolved").status == "Resolved"

    def test_backward_transition_rejected(self, runtime, employee_id):
        vid = runtime.violations.record_violation(employee_id, "t", "High", "x").violation_id
        runtime.violations.update_status(vid, "Resolved")

        with pytest.raises(StatusTransitionError):
            runtime.violations.update_status(vid, "Active")

    def test_status_change_does_not_rematch(self, runtime, session_factory, employee_id):
        make_policy(session_factory, "all", actions=[("log_detailed_activity", {})])
        vid = runtime.violations.record_violation(employee_id, "t", "High", "x").violation_id

        runtime.violations.update_status(vid, "Investigating")

        assert count(session_factory, PolicyExecution) == 1

    def test_unknown_violation(self, runtime):
        with pytest.raises(ViolationNotFound):
            runtime.violations.update_status("missing", "Resolved")


class TestBehavioralHandoff:
    def test_enqueue_deduplicates(self, runtime, employee_id):
        assert runtime.violations.enqueue_for_behavioral_analysis(employee_id, "ingest") is True
        assert runtime.violations.enqueue_for_behavioral_analysis(employee_id, "ingest") is False
        assert len(runtime.behavior_queue) == 1

    def test_no_analyzer_configured(self, engine, session_factory, mail, clock, employee_id):
        rt = build_runtime(engine, session_factory, Settings(DATABASE_URL="sqlite://"), mail=mail, clock=clock)
        try:
            assert rt.behavior_queue is None
            assert rt.violations.enqueue_for_behavioral_analysis(employee_id, "ingest") is False
        finally:
            rt.dispatcher.stop()
