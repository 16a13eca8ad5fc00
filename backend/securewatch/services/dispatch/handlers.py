"""
handlers.py - Response action handlers.

One handler per ActionType, looked up through the static ACTION_HANDLERS
table. A handler receives its typed configuration and an ActionContext and
either returns an ActionResult or raises:

- ConfigurationError: fatal, never retried
- TransientError (or any connectivity exception): retried with backoff
- CapabilityMissing: the side effect cannot be stored in this deployment;
  the dispatcher logs it and records a degraded success

Handlers must be idempotent: an execution may be attempted more than once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

from securewatch.core.errors import (
    ActionErrorCode,
    CapabilityMissing,
    ConfigurationError,
    ErrorClass,
    TransientError,
    classify_exception,
)
from securewatch.models.enums import ActionType
from securewatch.schemas.actions import (
    ActionConfig,
    DisableAccessConfig,
    EmailAlertConfig,
    EscalateIncidentConfig,
    ImmediateAlertConfig,
    IncreaseMonitoringConfig,
    LogDetailedActivityConfig,
)
from securewatch.services.collaborators.base import Collaborators
from securewatch.services.dispatch.capabilities import CapabilityRegistry
from securewatch.services.policy.types import SubjectSnapshot, ViolationSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionContext:
    execution_id: int
    policy_id: int
    policy_name: str
    violation: ViolationSnapshot
    subject: SubjectSnapshot
    collaborators: Collaborators
    capabilities: CapabilityRegistry
    now: datetime
    management_roles: tuple[str, ...] = ("manager", "admin", "security_admin")

    def require(self, name: str) -> Any:
        """Fetch a collaborator by attribute name, raising CapabilityMissing if unusable."""
        return self.capabilities.require(getattr(self.collaborators, name), name)

    @property
    def reason(self) -> str:
        return f"Policy '{self.policy_name}' on violation {self.violation.id}"


@dataclass
class ActionResult:
    details: dict[str, Any] = field(default_factory=dict)
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {**self.details, "degraded": self.degraded}


def _violation_summary(ctx: ActionContext) -> str:
    v = ctx.violation
    lines = [
        f"Employee: {ctx.subject.name} ({ctx.subject.email or 'no email'})",
        f"Department: {ctx.subject.department or 'unknown'}",
        f"Violation: {v.type}",
        f"Severity: {v.severity.value}",
        f"Description: {v.description}",
        f"Detected: {v.created_at.isoformat()}",
        f"Policy: {ctx.policy_name}",
    ]
    if v.risk_score is not None:
        lines.append(f"Risk score: {v.risk_score:g}")
    return "\n".join(lines)


def _management_recipients(ctx: ActionContext) -> list[str]:
    directory = ctx.require("directory")
    return directory.management_contacts()


def _send_mail(ctx: ActionContext, recipients: Sequence[str], subject: str, body: str):
    mail = ctx.require("mail")
    result = mail.send(list(recipients), subject, body)
    if not result.success:
        raise TransientError(
            f"Mail delivery failed: {result.error}",
            code=ActionErrorCode.DELIVERY_FAILED,
            details={"recipients": list(recipients)},
        )
    return result


def handle_email_alert(config: EmailAlertConfig, ctx: ActionContext) -> ActionResult:
    recipients = config.recipients or _management_recipients(ctx)
    if not recipients:
        raise ConfigurationError(
            "Email alert has no recipients and no management contacts exist",
            code=ActionErrorCode.MISSING_REFERENCE,
        )

    subject = config.subject or f"Security Alert: {ctx.policy_name}"
    body = _violation_summary(ctx)
    if config.message:
        body = f"{config.message}\n\n{body}"

    delivery = _send_mail(ctx, recipients, subject, body)
    logger.info("Email alert for execution %s sent to %d recipient(s)", ctx.execution_id, len(recipients))
    return ActionResult(
        {"recipients": list(recipients), "subject": subject, "message_id": delivery.message_id}
    )


def handle_escalate_incident(config: EscalateIncidentConfig, ctx: ActionContext) -> ActionResult:
    incidents = ctx.require("incidents")
    severity = config.incident_severity()
    title = config.title or f"Policy Escalation: {ctx.policy_name}"

    incident_id = incidents.create_incident(
        employee_id=ctx.subject.id,
        severity=severity.value,
        title=title,
        description=(
            f"Automated escalation for {ctx.subject.name}: {ctx.violation.description}"
        ),
        escalation_level=config.escalation_level,
        violation_id=ctx.violation.id,
        policy_id=ctx.policy_id,
        source_execution_id=ctx.execution_id,
    )

    notified = 0
    if config.notify_management:
        # Management notification is best effort; the incident stands either way
        try:
            recipients = _management_recipients(ctx)
            if recipients:
                _send_mail(
                    ctx,
                    recipients,
                    f"Escalated Security Incident: {ctx.policy_name}",
                    f"Escalation level: {config.escalation_level}\n"
                    f"Incident: {incident_id}\n\n{_violation_summary(ctx)}",
                )
                notified = len(recipients)
        except Exception as e:
            logger.warning(
                "Management notification for incident %s failed: %s",
                incident_id,
                e,
                extra={"diagnostic": "notification_failed", "execution_id": ctx.execution_id},
            )

    logger.info(
        "Incident %s escalated at %s (%s) for employee %s",
        incident_id,
        config.escalation_level,
        severity.value,
        ctx.subject.id,
    )
    return ActionResult(
        {
            "incident_id": incident_id,
            "severity": severity.value,
            "escalation_level": config.escalation_level,
            "management_notified": notified,
        }
    )


def handle_increase_monitoring(config: IncreaseMonitoringConfig, ctx: ActionContext) -> ActionResult:
    monitoring = ctx.require("monitoring")
    expiry = ctx.now + timedelta(hours=config.duration_hours)
    level, effective = monitoring.set_monitoring_level(
        ctx.subject.id, config.monitoring_level, expiry, reason=ctx.reason
    )
    return ActionResult(
        {
            "monitoring_level": level,
            "duration_hours": config.duration_hours,
            "expires_at": effective.isoformat(),
        }
    )


def handle_disable_access(config: DisableAccessConfig, ctx: ActionContext) -> ActionResult:
    restrictions = ctx.require("restrictions")
    expiry = (
        ctx.now + timedelta(hours=config.duration_hours)
        if config.duration_hours is not None
        else None
    )
    outcome = restrictions.set_access_restriction(
        ctx.subject.id,
        config.access_type,
        expiry,
        service=config.service,
        reason=ctx.reason,
    )

    employee_notified = False
    if outcome.applied and config.notify_employee and ctx.subject.email:
        until = outcome.expires_at.isoformat() if outcome.expires_at else "further notice"
        try:
            _send_mail(
                ctx,
                [ctx.subject.email],
                "Security Alert: Account Access Restricted",
                f"Your {config.access_type} access has been restricted until {until}.\n"
                f"Reason: {ctx.violation.type}\n"
                "Contact your IT security team if you believe this is an error.",
            )
            employee_notified = True
        except Exception as e:
            logger.warning(
                "Could not notify employee %s of restriction: %s",
                ctx.subject.id,
                e,
                extra={"diagnostic": "notification_failed", "execution_id": ctx.execution_id},
            )

    return ActionResult(
        {
            "applied": outcome.applied,
            "restriction_id": outcome.restriction_id,
            "access_type": config.access_type,
            "service": config.service,
            "expires_at": outcome.expires_at.isoformat() if outcome.expires_at else None,
            "employee_notified": employee_notified,
        }
    )


def handle_log_detailed_activity(config: LogDetailedActivityConfig, ctx: ActionContext) -> ActionResult:
    store = ctx.require("detailed_logging")
    scopes = frozenset(
        scope
        for scope, enabled in (
            ("network", config.include_network),
            ("files", config.include_files),
            ("communications", config.include_emails),
        )
        if enabled
    )
    expiry = ctx.now + timedelta(hours=config.duration_hours)
    effective = store.enable_detailed_logging(ctx.subject.id, scopes, expiry, reason=ctx.reason)
    return ActionResult(
        {
            "scopes": sorted(scopes),
            "duration_hours": config.duration_hours,
            "expires_at": effective.isoformat(),
        }
    )


def _alert_email(config: ImmediateAlertConfig, ctx: ActionContext) -> dict[str, Any]:
    recipients = _management_recipients(ctx)
    if not recipients:
        return {"status": "no_recipients"}
    delivery = _send_mail(
        ctx,
        recipients,
        f"[{config.priority.upper()}] Immediate Security Alert: {ctx.policy_name}",
        _violation_summary(ctx),
    )
    return {"status": "sent", "recipients": len(recipients), "message_id": delivery.message_id}


def _alert_in_app(config: ImmediateAlertConfig, ctx: ActionContext) -> dict[str, Any]:
    notifications = ctx.require("notifications")
    ids = notifications.notify(
        ctx.management_roles,
        f"Immediate Alert: {ctx.policy_name}",
        f"{ctx.subject.name}: {ctx.violation.description}",
        config.priority,
        {
            "execution_id": ctx.execution_id,
            "violation_id": ctx.violation.id,
            "employee_id": ctx.subject.id,
        },
    )
    return {"status": "sent", "notifications": len(ids)}


def _alert_unsupported(config: ImmediateAlertConfig, ctx: ActionContext) -> dict[str, Any]:
    # Accepted in policies, but no gateway is wired up for these channels
    return {"status": "unsupported"}


ALERT_CHANNELS: dict[str, Callable[[ImmediateAlertConfig, ActionContext], dict[str, Any]]] = {
    "email": _alert_email,
    "in_app": _alert_in_app,
    "sms": _alert_unsupported,
    "push": _alert_unsupported,
}


def handle_immediate_alert(config: ImmediateAlertConfig, ctx: ActionContext) -> ActionResult:
    """
    Fan out to every configured channel; each channel's outcome is recorded.

    Succeeds when at least one channel delivered. Fails transiently only
    when no channel delivered and at least one failed outright; when every
    channel was merely unavailable or unsupported the result is degraded.
    """
    channels: dict[str, dict[str, Any]] = {}
    for channel in config.alert_channels:
        try:
            channels[channel] = ALERT_CHANNELS[channel](config, ctx)
        except CapabilityMissing as e:
            logger.warning(
                "Immediate alert channel '%s' unavailable: %s",
                channel,
                e.message,
                extra={"diagnostic": "fallback", "execution_id": ctx.execution_id},
            )
            channels[channel] = {"status": "unavailable", "error": e.message}
        except Exception as e:
            error = classify_exception(e)
            logger.warning(
                "Immediate alert channel '%s' failed (%s): %s",
                channel,
                error.classification.value,
                error.message,
                extra={"execution_id": ctx.execution_id},
            )
            channels[channel] = {
                "status": "failed",
                "error": error.message,
                "transient": error.classification is ErrorClass.TRANSIENT,
            }

    statuses = {outcome["status"] for outcome in channels.values()}
    details = {"priority": config.priority, "channels": channels}
    if "sent" in statuses:
        return ActionResult(details)
    if "failed" in statuses:
        raise TransientError(
            "Immediate alert failed on every channel",
            code=ActionErrorCode.DELIVERY_FAILED,
            details=details,
        )
    return ActionResult(details, degraded=True)


Handler = Callable[[Any, ActionContext], ActionResult]

ACTION_HANDLERS: dict[ActionType, Handler] = {
    ActionType.EMAIL_ALERT: handle_email_alert,
    ActionType.ESCALATE_INCIDENT: handle_escalate_incident,
    ActionType.INCREASE_MONITORING: handle_increase_monitoring,
    ActionType.DISABLE_ACCESS: handle_disable_access,
    ActionType.LOG_DETAILED_ACTIVITY: handle_log_detailed_activity,
    ActionType.IMMEDIATE_ALERT: handle_immediate_alert,
}


def run_handler(
    action_type: ActionType,
    config: ActionConfig,
    ctx: ActionContext,
    handlers: Optional[dict[ActionType, Handler]] = None,
) -> ActionResult:
    table = ACTION_HANDLERS if handlers is None else handlers
    return table[action_type](config, ctx)
