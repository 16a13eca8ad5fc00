from enum import Enum


class ViolationSeverity(str, Enum):
    """Ordered severity: Low < Medium < High < Critical."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: "str | ViolationSeverity") -> "ViolationSeverity":
        """Case-insensitive lookup by value. Raises ValueError when unknown."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"Unknown severity: {value!r}")


_SEVERITY_RANK = {
    ViolationSeverity.LOW: 1,
    ViolationSeverity.MEDIUM: 2,
    ViolationSeverity.HIGH: 3,
    ViolationSeverity.CRITICAL: 4,
}


class ViolationStatus(str, Enum):
    ACTIVE = "Active"
    INVESTIGATING = "Investigating"
    RESOLVED = "Resolved"

    @property
    def rank(self) -> int:
        return list(ViolationStatus).index(self)


class PolicyScope(str, Enum):
    GLOBAL = "global"
    GROUP = "group"
    USER = "user"


class TargetType(str, Enum):
    DEPARTMENT = "department"
    ROLE = "role"
    USER = "user"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED)


class ActionType(str, Enum):
    """Closed set of response actions. The dispatcher has one handler per member."""

    EMAIL_ALERT = "email_alert"
    ESCALATE_INCIDENT = "escalate_incident"
    INCREASE_MONITORING = "increase_monitoring"
    DISABLE_ACCESS = "disable_access"
    LOG_DETAILED_ACTIVITY = "log_detailed_activity"
    IMMEDIATE_ALERT = "immediate_alert"
