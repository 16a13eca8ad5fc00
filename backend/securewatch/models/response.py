"""
response.py - Side-effect stores written by action handlers.

These tables are created by a separate migration from the core engine
tables. A deployment may run the engine before they exist; handlers then
degrade to logging (see services.dispatch.capabilities).
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)

from securewatch.database import Base


class Incident(Base):
    __tablename__ = "incidents"

    id = Column(Integer, primary_key=True)
    incident_number = Column(String(50), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    severity = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="Open")
    escalation_level = Column(String(20), nullable=False, default="normal")
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    violation_id = Column(String(36), ForeignKey("violations.id"), nullable=True)
    policy_id = Column(Integer, ForeignKey("security_policies.id"), nullable=True)
    source_execution_id = Column(Integer, nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False)


class MonitoringSetting(Base):
    __tablename__ = "employee_monitoring_settings"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, unique=True)
    monitoring_level = Column(String(20), nullable=False, default="normal")
    enabled = Column(Boolean, nullable=False, default=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    reason = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=True)


class AccessRestriction(Base):
    __tablename__ = "employee_access_restrictions"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    restriction_type = Column(String(30), nullable=False)  # all | email | specific_service
    service = Column(String(100), nullable=True)
    reason = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)  # NULL = until manually lifted
    is_active = Column(Boolean, nullable=False, default=True)


class DetailedLoggingSetting(Base):
    __tablename__ = "employee_logging_settings"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, unique=True)
    detailed_logging_enabled = Column(Boolean, nullable=False, default=True)
    include_network_activity = Column(Boolean, nullable=False, default=False)
    include_file_access = Column(Boolean, nullable=False, default=False)
    include_communications = Column(Boolean, nullable=False, default=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=True)


class SystemNotification(Base):
    __tablename__ = "system_notifications"

    id = Column(Integer, primary_key=True)
    recipient_role = Column(String(50), nullable=False, index=True)
    notification_type = Column(String(50), nullable=False)
    priority = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    metadata_json = Column(Text, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False)


class ActivityLog(Base):
    """Audit trail of engine decisions, one row per terminal execution outcome."""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)
    action_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    source = Column(String(50), nullable=False, default="policy_engine")
    severity = Column(String(20), nullable=True)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)


class BehavioralAnalysis(Base):
    __tablename__ = "behavioral_analyses"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    trigger_source = Column(String(100), nullable=True)
    risk_score = Column(Float, nullable=False)
    findings_json = Column(Text, nullable=True)
    analyzed_at = Column(DateTime, nullable=False)
