"""
001_policy_engine_core.py - Tables owned by the policy engine.

employees, violations, policies with their conditions and actions, and
policy_executions. Side-effect stores are a separate revision (002) so a
deployment can run the engine before they exist.

Revision ID: 001_policy_engine_core
Revises:
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers
revision = "001_policy_engine_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True, unique=True),
        sa.Column("department", sa.String(100), nullable=True),
        sa.Column("role", sa.String(50), nullable=True),
        sa.Column("risk_score", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("access_disabled_until", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_employees_department", "employees", ["department"])
    op.create_index("ix_employees_role", "employees", ["role"])

    op.create_table(
        "violations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="Active"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_violations_employee_id", "violations", ["employee_id"])
    op.create_index("ix_violations_type", "violations", ["type"])
    op.create_index("ix_violations_severity", "violations", ["severity"])
    op.create_index("ix_violations_created_at", "violations", ["created_at"])
    op.create_index("ix_violations_employee_created", "violations", ["employee_id", "created_at"])

    op.create_table(
        "security_policies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("scope", sa.String(20), nullable=False, server_default="global"),
        sa.Column("target_type", sa.String(20), nullable=True),
        sa.Column("target_id", sa.String(255), nullable=True),
        sa.Column("logical_operator", sa.String(3), nullable=False, server_default="AND"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index(
        "ix_security_policies_active_priority", "security_policies", ["is_active", "priority"]
    )

    op.create_table(
        "policy_conditions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "policy_id",
            sa.Integer(),
            sa.ForeignKey("security_policies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("field", sa.String(100), nullable=False),
        sa.Column("operator", sa.String(30), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("condition_order", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_policy_conditions_policy_id", "policy_conditions", ["policy_id"])

    op.create_table(
        "policy_actions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "policy_id",
            sa.Integer(),
            sa.ForeignKey("security_policies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("action_config", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("execution_order", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("delay_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_policy_actions_policy_id", "policy_actions", ["policy_id"])

    op.create_table(
        "policy_executions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("policy_id", sa.Integer(), sa.ForeignKey("security_policies.id"), nullable=False),
        sa.Column("violation_id", sa.String(36), sa.ForeignKey("violations.id"), nullable=False),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column(
            "action_id",
            sa.Integer(),
            sa.ForeignKey("policy_actions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("action_config", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("execution_order", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("not_before", sa.DateTime(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_class", sa.String(30), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_policy_executions_policy_id", "policy_executions", ["policy_id"])
    op.create_index("ix_policy_executions_violation_id", "policy_executions", ["violation_id"])
    op.create_index("ix_policy_executions_employee_id", "policy_executions", ["employee_id"])
    op.create_index(
        "ix_policy_executions_due", "policy_executions", ["status", "not_before", "created_at"]
    )
    op.create_index(
        "ix_policy_executions_violation_policy",
        "policy_executions",
        ["violation_id", "policy_id"],
    )


def downgrade() -> None:
    op.drop_table("policy_executions")
    op.drop_table("policy_actions")
    op.drop_table("policy_conditions")
    op.drop_table("security_policies")
    op.drop_table("violations")
    op.drop_table("employees")
