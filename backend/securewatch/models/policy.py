"""
policy.py - Security policy configuration.

A policy is a named rule owned by an administrator: a scope, a set of
conditions combined with a single logical operator, and an ordered list of
response actions.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from securewatch.database import Base
from securewatch.models.enums import LogicalOperator, PolicyScope


class SecurityPolicy(Base):
    __tablename__ = "security_policies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=100)  # Lower evaluates first
    scope = Column(String(20), nullable=False, default=PolicyScope.GLOBAL.value)
    target_type = Column(String(20), nullable=True)  # department | role | user
    target_id = Column(String(255), nullable=True)
    logical_operator = Column(String(3), nullable=False, default=LogicalOperator.AND.value)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=True)

    conditions = relationship(
        "PolicyCondition",
        back_populates="policy",
        order_by="PolicyCondition.condition_order",
        cascade="all, delete-orphan",
    )
    actions = relationship(
        "PolicyAction",
        back_populates="policy",
        order_by="PolicyAction.execution_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_security_policies_active_priority", "is_active", "priority"),
    )


class PolicyCondition(Base):
    __tablename__ = "policy_conditions"

    id = Column(Integer, primary_key=True)
    policy_id = Column(
        Integer, ForeignKey("security_policies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    field = Column(String(100), nullable=False)  # e.g. risk_score, violation_severity
    operator = Column(String(30), nullable=False)
    value = Column(Text, nullable=False)  # Scalar, or JSON/comma-separated list for `in`
    condition_order = Column(Integer, nullable=False, default=1)

    policy = relationship("SecurityPolicy", back_populates="conditions")


class PolicyAction(Base):
    __tablename__ = "policy_actions"

    id = Column(Integer, primary_key=True)
    policy_id = Column(
        Integer, ForeignKey("security_policies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action_type = Column(String(50), nullable=False)
    action_config = Column(Text, nullable=False, default="{}")  # JSON document
    execution_order = Column(Integer, nullable=False, default=1)
    delay_minutes = Column(Integer, nullable=False, default=0)
    is_enabled = Column(Boolean, nullable=False, default=True)

    policy = relationship("SecurityPolicy", back_populates="actions")
