"""
test_handlers.py - Response action handlers against the SQL stores.

Handlers are called directly with a hand-built ActionContext; the
dispatcher is not involved.
"""

from datetime import timedelta

import pytest

from conftest import FakeMailTransport, make_employee, make_policy, make_violation
from securewatch.config import settings
from securewatch.core.errors import ConfigurationError, TransientError
from securewatch.models import (
    AccessRestriction,
    DetailedLoggingSetting,
    Employee,
    Incident,
    MonitoringSetting,
    SystemNotification,
)
from securewatch.models.enums import ActionType
from securewatch.runtime import build_collaborators
from securewatch.schemas.actions import (
    DisableAccessConfig,
    EmailAlertConfig,
    EscalateIncidentConfig,
    ImmediateAlertConfig,
    IncreaseMonitoringConfig,
    LogDetailedActivityConfig,
    parse_action_config,
)
from securewatch.services.dispatch.capabilities import CapabilityRegistry
from securewatch.services.dispatch.handlers import (
    ACTION_HANDLERS,
    ActionContext,
    handle_disable_access,
    handle_email_alert,
    handle_escalate_incident,
    handle_immediate_alert,
    handle_increase_monitoring,
    handle_log_detailed_activity,
    run_handler,
)
from securewatch.services.policy.types import SubjectSnapshot


@pytest.fixture
def subject(session_factory):
    employee_id = make_employee(session_factory)
    db = session_factory()
    try:
        return SubjectSnapshot.from_row(db.get(Employee, employee_id))
    finally:
        db.close()


@pytest.fixture
def manager(session_factory):
    return make_employee(
        session_factory, name="Morgan Lee", email="morgan.lee@company.com", role="manager"
    )


@pytest.fixture
def make_ctx(engine, session_factory, clock, mail, subject):
    policy_id = make_policy(session_factory, "respond")
    violation = make_violation(
        session_factory, subject.id, clock.now, metadata={"risk_score": 92}
    )

    def _make(execution_id=1, transport=None, capabilities=None):
        return ActionContext(
            execution_id=execution_id,
            policy_id=policy_id,
            policy_name="respond",
            violation=violation,
            subject=subject,
            collaborators=build_collaborators(
                session_factory,
                settings,
                mail=transport if transport is not None else mail,
                clock=clock,
            ),
            capabilities=capabilities or CapabilityRegistry.from_engine(engine),
            now=clock.now,
            management_roles=("manager", "admin"),
        )

    return _make


def rows(session_factory, model):
    db = session_factory()
    try:
        return db.query(model).order_by(model.id).all()
    finally:
        db.close()


def test_every_action_type_has_a_handler():
    assert set(ACTION_HANDLERS) == set(ActionType)


class TestEmailAlert:
    def test_explicit_recipients(self, make_ctx, mail):
        result = handle_email_alert(
            EmailAlertConfig(recipients="sec@company.com, ciso@company.com", message="Review now"),
            make_ctx(),
        )

        recipients, subject, body = mail.sent[0]
        assert recipients == ["sec@company.com", "ciso@company.com"]
        assert subject == "Security Alert: respond"
        assert body.startswith("Review now\n\n")
        assert "Employee: Jane Doe" in body
        assert result.details["message_id"] == "<msg-1@test>"

    def test_defaults_to_management_chain(self, make_ctx, mail, manager):
        handle_email_alert(EmailAlertConfig(subject="Heads up"), make_ctx())
        assert mail.sent[0][:2] == (["morgan.lee@company.com"], "Heads up")

    def test_no_recipients_is_configuration_error(self, make_ctx, mail):
        with pytest.raises(ConfigurationError):
            handle_email_alert(EmailAlertConfig(), make_ctx())
        assert mail.sent == []

    def test_rejected_delivery_is_transient(self, make_ctx):
        with pytest.raises(TransientError):
            handle_email_alert(
                EmailAlertConfig(recipients=["a@x.com"]),
                make_ctx(transport=FakeMailTransport(fail=True)),
            )


class TestEscalateIncident:
    def test_creates_incident_with_mapped_severity(self, make_ctx, mail, manager, session_factory, subject):
        result = handle_escalate_incident(
            EscalateIncidentConfig(escalation_level="critical"), make_ctx(execution_id=7)
        )

        (incident,) = rows(session_factory, Incident)
        assert incident.id == result.details["incident_id"]
        assert incident.severity == "Critical"
        assert incident.escalation_level == "critical"
        assert incident.employee_id == subject.id
        assert incident.source_execution_id == 7
        assert incident.incident_number.startswith("INC-20240312-")
        assert result.details["management_notified"] == 1
        assert mail.sent[0][0] == ["morgan.lee@company.com"]

    def test_idempotent_per_execution(self, make_ctx, session_factory):
        ctx = make_ctx(execution_id=11)
        config = EscalateIncidentConfig(notify_management=False)

        first = handle_escalate_incident(config, ctx)
        second = handle_escalate_incident(config, ctx)

        assert first.details["incident_id"] == second.details["incident_id"]
        assert len(rows(session_factory, Incident)) == 1

    def test_explicit_severity_wins(self, make_ctx, session_factory):
        handle_escalate_incident(
            EscalateIncidentConfig(escalation_level="normal", severity="low", notify_management=False),
            make_ctx(),
        )
        assert rows(session_factory, Incident)[0].severity == "Low"

    def test_notification_failure_does_not_fail_escalation(self, make_ctx, manager, session_factory):
        result = handle_escalate_incident(
            EscalateIncidentConfig(), make_ctx(transport=FakeMailTransport(fail=True))
        )
        assert result.details["management_notified"] == 0
        assert len(rows(session_factory, Incident)) == 1


class TestIncreaseMonitoring:
    def test_sets_level_and_expiry(self, make_ctx, session_factory, clock):
        result = handle_increase_monitoring(
            IncreaseMonitoringConfig(duration_hours=12, monitoring_level="maximum"), make_ctx()
        )

        (setting,) = rows(session_factory, MonitoringSetting)
        assert setting.monitoring_level == "maximum"
        assert setting.end_time == clock.now + timedelta(hours=12)
        assert result.details["expires_at"] == (clock.now + timedelta(hours=12)).isoformat()

    def test_reapply_never_shortens(self, make_ctx, session_factory, clock):
        handle_increase_monitoring(IncreaseMonitoringConfig(duration_hours=48), make_ctx())
        handle_increase_monitoring(IncreaseMonitoringConfig(duration_hours=2), make_ctx())

        (setting,) = rows(session_factory, MonitoringSetting)
        assert setting.end_time == clock.now + timedelta(hours=48)

    def test_reapply_never_downgrades(self, make_ctx, session_factory, clock):
        handle_increase_monitoring(
            IncreaseMonitoringConfig(duration_hours=4, monitoring_level="maximum"), make_ctx()
        )
        result = handle_increase_monitoring(
            IncreaseMonitoringConfig(duration_hours=24, monitoring_level="high"), make_ctx()
        )

        (setting,) = rows(session_factory, MonitoringSetting)
        assert setting.monitoring_level == "maximum"
        assert setting.end_time == clock.now + timedelta(hours=24)
        assert result.details["monitoring_level"] == "maximum"

    def test_expired_setting_takes_new_level(self, make_ctx, session_factory, clock):
        handle_increase_monitoring(
            IncreaseMonitoringConfig(duration_hours=1, monitoring_level="maximum"), make_ctx()
        )
        clock.advance(hours=2)
        handle_increase_monitoring(IncreaseMonitoringConfig(monitoring_level="normal"), make_ctx())

        (setting,) = rows(session_factory, MonitoringSetting)
        assert setting.monitoring_level == "normal"


class TestDisableAccess:
    def test_all_access_deactivates_employee(self, make_ctx, session_factory, clock, subject, mail):
        result = handle_disable_access(
            DisableAccessConfig(access_type="all", duration_hours=72, notify_employee=True),
            make_ctx(),
        )

        (restriction,) = rows(session_factory, AccessRestriction)
        assert restriction.restriction_type == "all"
        assert restriction.end_time == clock.now + timedelta(hours=72)
        db = session_factory()
        try:
            employee = db.get(Employee, subject.id)
            assert employee.is_active is False
            assert employee.access_disabled_until == clock.now + timedelta(hours=72)
        finally:
            db.close()
        assert result.details["applied"] is True
        assert result.details["employee_notified"] is True
        assert mail.sent[0][0] == ["jane.doe@company.com"]

    def test_covered_restriction_not_reapplied(self, make_ctx, session_factory, mail):
        handle_disable_access(DisableAccessConfig(access_type="all"), make_ctx())
        result = handle_disable_access(
            DisableAccessConfig(access_type="email", duration_hours=24, notify_employee=True),
            make_ctx(),
        )

        assert result.details["applied"] is False
        assert result.details["employee_notified"] is False
        assert len(rows(session_factory, AccessRestriction)) == 1
        assert mail.sent == []

    def test_longer_restriction_is_added(self, make_ctx, session_factory):
        handle_disable_access(DisableAccessConfig(access_type="email", duration_hours=1), make_ctx())
        result = handle_disable_access(DisableAccessConfig(access_type="email", duration_hours=24), make_ctx())

        assert result.details["applied"] is True
        assert len(rows(session_factory, AccessRestriction)) == 2

    def test_specific_service_requires_service(self):
        with pytest.raises(ConfigurationError):
            parse_action_config("disable_access", {"access_type": "specific_service"})


class TestLogDetailedActivity:
    def test_scopes_stored(self, make_ctx, session_factory, clock):
        result = handle_log_detailed_activity(
            LogDetailedActivityConfig(include_network=True, include_emails=False), make_ctx()
        )

        (setting,) = rows(session_factory, DetailedLoggingSetting)
        assert setting.include_network_activity is True
        assert setting.include_file_access is False
        assert setting.include_communications is False
        assert setting.end_time == clock.now + timedelta(hours=48)
        assert result.details["scopes"] == ["network"]


class TestImmediateAlert:
    def test_all_channels_delivered(self, make_ctx, manager, session_factory, mail):
        result = handle_immediate_alert(
            ImmediateAlertConfig(alert_channels=["email", "system"], priority="critical"), make_ctx()
        )

        assert result.degraded is False
        assert result.details["channels"]["email"]["status"] == "sent"
        assert result.details["channels"]["in_app"] == {"status": "sent", "notifications": 2}
        notifications = rows(session_factory, SystemNotification)
        assert [n.recipient_role for n in notifications] == ["manager", "admin"]
        assert all(n.priority == "critical" for n in notifications)
        assert mail.sent[0][1].startswith("[CRITICAL]")

    def test_one_channel_enough(self, make_ctx, manager):
        result = handle_immediate_alert(
            ImmediateAlertConfig(), make_ctx(transport=FakeMailTransport(fail=True))
        )
        assert result.details["channels"]["email"]["status"] == "failed"
        assert result.details["channels"]["in_app"]["status"] == "sent"

    def test_all_unavailable_is_degraded(self, engine, make_ctx):
        available = CapabilityRegistry.from_engine(engine).available - {"system_notifications"}
        # No management contacts, in-app store missing
        result = handle_immediate_alert(
            ImmediateAlertConfig(), make_ctx(capabilities=CapabilityRegistry(available))
        )
        assert result.degraded is True
        assert result.details["channels"]["email"]["status"] == "no_recipients"
        assert result.details["channels"]["in_app"]["status"] == "unavailable"

    def test_failed_without_delivery_is_transient(self, engine, make_ctx, manager):
        available = CapabilityRegistry.from_engine(engine).available - {"system_notifications"}
        ctx = make_ctx(
            transport=FakeMailTransport(fail=True), capabilities=CapabilityRegistry(available)
        )
        with pytest.raises(TransientError) as exc_info:
            handle_immediate_alert(ImmediateAlertConfig(), ctx)
        assert exc_info.value.details["channels"]["email"]["transient"] is True

    def test_sms_and_push_do_not_block_other_channels(self, make_ctx, manager, mail):
        config = parse_action_config(
            "immediate_alert", {"alert_channels": ["email", "system", "sms", "push"]}
        )
        assert config.alert_channels == ["email", "in_app", "sms", "push"]

        result = handle_immediate_alert(config, make_ctx())

        assert result.degraded is False
        assert result.details["channels"]["email"]["status"] == "sent"
        assert result.details["channels"]["in_app"]["status"] == "sent"
        assert result.details["channels"]["sms"] == {"status": "unsupported"}
        assert result.details["channels"]["push"] == {"status": "unsupported"}
        assert len(mail.sent) == 1

    def test_only_unsupported_channels_is_degraded(self, make_ctx, mail):
        result = handle_immediate_alert(ImmediateAlertConfig(alert_channels=["sms"]), make_ctx())

        assert result.degraded is True
        assert result.details["channels"] == {"sms": {"status": "unsupported"}}
        assert mail.sent == []

    def test_run_handler_dispatches_by_type(self, make_ctx, session_factory):
        config = parse_action_config("log_detailed_activity", {"include_files": True})
        result = run_handler(ActionType.LOG_DETAILED_ACTIVITY, config, make_ctx())
        assert result.details["scopes"] == ["communications", "files"]
