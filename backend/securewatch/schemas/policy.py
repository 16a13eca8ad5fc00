"""
policy.py - Pydantic schemas for policy documents and API responses.

PolicyDocument is the validated form of policy.yaml. Every condition
operator and action configuration is checked at load time so that a bad
document is rejected before anything reaches the policy store.
"""

import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from securewatch.core.errors import ActionError
from securewatch.models.enums import LogicalOperator, PolicyScope, TargetType
from securewatch.schemas.actions import parse_action_config
from securewatch.services.policy.conditions import ConditionOperator


class ConditionDefinition(BaseModel):
    field: str = Field(..., min_length=1, description="Field selector")
    operator: str = Field(..., description="Comparison operator")
    value: Any = Field(None, description="Comparison value")

    @field_validator("operator")
    @classmethod
    def operator_must_be_known(cls, v: str) -> str:
        try:
            return ConditionOperator.parse(v).value
        except ValueError:
            raise ValueError(f"Unknown operator: {v}")

    def stored_value(self) -> str:
        """Conditions store their comparison value as text."""
        if isinstance(self.value, str):
            return self.value
        if self.value is None:
            return ""
        return json.dumps(self.value)


class ActionDefinition(BaseModel):
    action_type: str
    config: dict[str, Any] = Field(default_factory=dict)
    delay_minutes: int = Field(0, ge=0)
    enabled: bool = True

    @model_validator(mode="after")
    def config_must_validate(self) -> "ActionDefinition":
        try:
            parse_action_config(self.action_type, self.config)
        except ActionError as e:
            raise ValueError(f"{e.message}: {e.details}")
        return self


class PolicyDefinition(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    is_active: bool = True
    priority: int = 100
    scope: PolicyScope = PolicyScope.GLOBAL
    target_type: Optional[TargetType] = None
    target_id: Optional[str] = None
    logical_operator: LogicalOperator = LogicalOperator.AND
    conditions: list[ConditionDefinition] = Field(default_factory=list)
    actions: list[ActionDefinition] = Field(default_factory=list)

    @field_validator("logical_operator", mode="before")
    @classmethod
    def upper_operator(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("target_id", mode="before")
    @classmethod
    def target_id_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @model_validator(mode="after")
    def scope_needs_target(self) -> "PolicyDefinition":
        if self.scope == PolicyScope.GROUP:
            if self.target_type not in (TargetType.DEPARTMENT, TargetType.ROLE):
                raise ValueError("group scope requires target_type 'department' or 'role'")
            if not self.target_id:
                raise ValueError("group scope requires target_id")
        if self.scope == PolicyScope.USER and not self.target_id:
            raise ValueError("user scope requires target_id")
        return self


class PolicyDocument(BaseModel):
    """Root of policy.yaml."""

    version: str = Field("1", description="Policy set version")
    policies: list[PolicyDefinition] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def version_as_text(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @field_validator("policies")
    @classmethod
    def names_must_be_unique(cls, v: list[PolicyDefinition]) -> list[PolicyDefinition]:
        names = [p.name for p in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate policy names: {duplicates}")
        return v


# --- API responses ---


class ConditionRead(BaseModel):
    id: int
    field: str
    operator: str
    value: str
    condition_order: int

    class Config:
        from_attributes = True


class ActionRead(BaseModel):
    id: int
    action_type: str
    action_config: str = Field(..., description="JSON configuration document")
    execution_order: int
    delay_minutes: int
    is_enabled: bool

    class Config:
        from_attributes = True


class PolicyRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    is_active: bool
    priority: int
    scope: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    logical_operator: str
    conditions: list[ConditionRead] = Field(default_factory=list)
    actions: list[ActionRead] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PolicyReloadResult(BaseModel):
    version: str
    config_hash: str = Field(..., description="SHA-256 of the canonical policy document")
    created: int
    updated: int
    policies: list[str]
