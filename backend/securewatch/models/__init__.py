from .enums import (
    ActionType,
    ExecutionStatus,
    LogicalOperator,
    PolicyScope,
    TargetType,
    ViolationSeverity,
    ViolationStatus,
)
from .employee import Employee
from .violation import Violation
from .policy import SecurityPolicy, PolicyCondition, PolicyAction
from .execution import PolicyExecution
from .response import (
    AccessRestriction,
    ActivityLog,
    BehavioralAnalysis,
    DetailedLoggingSetting,
    Incident,
    MonitoringSetting,
    SystemNotification,
)

__all__ = [
    "ActionType",
    "ExecutionStatus",
    "LogicalOperator",
    "PolicyScope",
    "TargetType",
    "ViolationSeverity",
    "ViolationStatus",
    "Employee",
    "Violation",
    "SecurityPolicy",
    "PolicyCondition",
    "PolicyAction",
    "PolicyExecution",
    "AccessRestriction",
    "ActivityLog",
    "BehavioralAnalysis",
    "DetailedLoggingSetting",
    "Incident",
    "MonitoringSetting",
    "SystemNotification",
]
