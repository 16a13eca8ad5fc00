"""
actions.py - Typed configuration for each response action type.

The set of action types is closed (ActionType). Each member has exactly one
configuration model here; ACTION_CONFIG_TYPES is the static lookup the
dispatcher uses to turn a stored JSON document into a typed configuration.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from securewatch.core.errors import ConfigurationError, UnsupportedActionError
from securewatch.models.enums import ActionType, ViolationSeverity


class ActionConfig(BaseModel):
    """Base for action configuration. Unknown keys are ignored."""

    class Config:
        extra = "ignore"


def _split_recipients(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class EmailAlertConfig(ActionConfig):
    recipients: list[str] = Field(
        default_factory=list,
        description="Explicit recipients. Empty means the management chain.",
    )
    subject: Optional[str] = Field(None, description="Subject line override")
    message: Optional[str] = Field(None, description="Body prefix")

    @field_validator("recipients", mode="before")
    @classmethod
    def split_recipients(cls, v: Any) -> Any:
        return _split_recipients(v)


ESCALATION_SEVERITY = {
    "normal": ViolationSeverity.MEDIUM,
    "high": ViolationSeverity.HIGH,
    "critical": ViolationSeverity.CRITICAL,
    "immediate": ViolationSeverity.CRITICAL,
}


class EscalateIncidentConfig(ActionConfig):
    escalation_level: Literal["normal", "high", "critical", "immediate"] = "high"
    severity: Optional[ViolationSeverity] = Field(
        None, description="Incident severity; derived from escalation_level when unset"
    )
    notify_management: bool = True
    title: Optional[str] = None

    @field_validator("escalation_level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("severity", mode="before")
    @classmethod
    def parse_severity(cls, v: Any) -> Any:
        if v is None or isinstance(v, ViolationSeverity):
            return v
        return ViolationSeverity.parse(v)

    def incident_severity(self) -> ViolationSeverity:
        return self.severity or ESCALATION_SEVERITY[self.escalation_level]


class IncreaseMonitoringConfig(ActionConfig):
    duration_hours: int = Field(24, gt=0)
    monitoring_level: Literal["low", "normal", "high", "maximum"] = "high"


class DisableAccessConfig(ActionConfig):
    access_type: Literal["all", "email", "specific_service"] = "all"
    service: Optional[str] = Field(None, description="Required for specific_service")
    duration_hours: Optional[int] = Field(
        None, gt=0, description="None disables access until manually lifted"
    )
    notify_employee: bool = False

    @model_validator(mode="after")
    def service_required_for_specific(self) -> "DisableAccessConfig":
        if self.access_type == "specific_service" and not self.service:
            raise ValueError("access_type 'specific_service' requires 'service'")
        return self


class LogDetailedActivityConfig(ActionConfig):
    duration_hours: int = Field(48, gt=0)
    include_network: bool = False
    include_files: bool = False
    include_emails: bool = True


class ImmediateAlertConfig(ActionConfig):
    alert_channels: list[Literal["email", "in_app", "sms", "push"]] = Field(
        default_factory=lambda: ["email", "in_app"], min_length=1
    )
    priority: Literal["normal", "high", "urgent", "critical"] = "urgent"

    @field_validator("alert_channels", mode="before")
    @classmethod
    def normalize_channels(cls, v: Any) -> Any:
        v = _split_recipients(v)
        if not isinstance(v, list):
            return v
        # "system" is the older name for the in-app channel
        channels = ["in_app" if c == "system" else c for c in v]
        return list(dict.fromkeys(channels))


ACTION_CONFIG_TYPES: dict[ActionType, type[ActionConfig]] = {
    ActionType.EMAIL_ALERT: EmailAlertConfig,
    ActionType.ESCALATE_INCIDENT: EscalateIncidentConfig,
    ActionType.INCREASE_MONITORING: IncreaseMonitoringConfig,
    ActionType.DISABLE_ACCESS: DisableAccessConfig,
    ActionType.LOG_DETAILED_ACTIVITY: LogDetailedActivityConfig,
    ActionType.IMMEDIATE_ALERT: ImmediateAlertConfig,
}


def resolve_action_type(action_type: str) -> ActionType:
    try:
        return ActionType(action_type)
    except ValueError:
        raise UnsupportedActionError(action_type) from None


def parse_action_config(action_type: str, raw: dict[str, Any] | None) -> ActionConfig:
    """
    Validate a stored configuration document against its action type.

    Raises:
        UnsupportedActionError: action_type is not a member of ActionType
        ConfigurationError: the document does not validate
    """
    kind = resolve_action_type(action_type)
    model = ACTION_CONFIG_TYPES[kind]
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid {kind.value} configuration",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e
