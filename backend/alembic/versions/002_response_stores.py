"""
002_response_stores.py - Side-effect stores written by action handlers.

Until this revision is applied the dispatcher reports these stores as
missing and the affected actions succeed in degraded (logged only) mode.

Revision ID: 002_response_stores
Revises: 001_policy_engine_core
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers
revision = "002_response_stores"
down_revision = "001_policy_engine_core"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "incidents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("incident_number", sa.String(50), nullable=False, unique=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Open"),
        sa.Column("escalation_level", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("violation_id", sa.String(36), sa.ForeignKey("violations.id"), nullable=True),
        sa.Column("policy_id", sa.Integer(), sa.ForeignKey("security_policies.id"), nullable=True),
        sa.Column("source_execution_id", sa.Integer(), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_incidents_employee_id", "incidents", ["employee_id"])

    op.create_table(
        "employee_monitoring_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False, unique=True),
        sa.Column("monitoring_level", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "employee_access_restrictions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("restriction_type", sa.String(30), nullable=False),
        sa.Column("service", sa.String(100), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index(
        "ix_employee_access_restrictions_employee_id",
        "employee_access_restrictions",
        ["employee_id"],
    )

    op.create_table(
        "employee_logging_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False, unique=True),
        sa.Column("detailed_logging_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("include_network_activity", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("include_file_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("include_communications", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "system_notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient_role", sa.String(50), nullable=False),
        sa.Column("notification_type", sa.String(50), nullable=False),
        sa.Column("priority", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_system_notifications_recipient_role", "system_notifications", ["recipient_role"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("source", sa.String(50), nullable=False, server_default="policy_engine"),
        sa.Column("severity", sa.String(20), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_activity_logs_employee_id", "activity_logs", ["employee_id"])

    op.create_table(
        "behavioral_analyses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("trigger_source", sa.String(100), nullable=True),
        sa.Column("risk_score", sa.Float(), nullable=False),
        sa.Column("findings_json", sa.Text(), nullable=True),
        sa.Column("analyzed_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_behavioral_analyses_employee_id", "behavioral_analyses", ["employee_id"])


def downgrade() -> None:
    op.drop_table("behavioral_analyses")
    op.drop_table("activity_logs")
    op.drop_table("system_notifications")
    op.drop_table("employee_logging_settings")
    op.drop_table("employee_access_restrictions")
    op.drop_table("employee_monitoring_settings")
    op.drop_table("incidents")
