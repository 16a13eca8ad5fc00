"""
conditions.py - Condition evaluation language.

evaluate() is a PURE FUNCTION over an immutable ViolationContext:
- No database, network or environment access
- Never raises for well-formed input
- Malformed comparison values evaluate to False and emit a diagnostic,
  so sibling conditions are still evaluated

The context is assembled by the Policy Matcher, which is the only place
that touches the datastore.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Mapping, Sequence

from securewatch.models.enums import LogicalOperator, ViolationSeverity

logger = logging.getLogger(__name__)


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"

    @classmethod
    def parse(cls, value: str) -> "ConditionOperator":
        value = OPERATOR_ALIASES.get(value, value)
        return cls(value)


# Spellings used by older policy definitions
OPERATOR_ALIASES = {
    "greater_equal": ConditionOperator.GREATER_OR_EQUAL.value,
    "less_equal": ConditionOperator.LESS_OR_EQUAL.value,
}


@dataclass(frozen=True)
class Condition:
    field: str
    operator: str
    value: Any


@dataclass(frozen=True)
class ViolationContext:
    """Immutable evaluation input: the violation plus resolved subject facts."""

    violation_id: str
    employee_id: int
    violation_type: str
    severity: ViolationSeverity
    description: str
    created_at: datetime
    risk_score: float | None = None
    source: str | None = None
    regulatory_tags: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    employee_risk_score: float | None = None
    employee_department: str | None = None
    employee_role: str | None = None
    frequency: int = 0
    outside_business_hours: bool = False


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


def _risk_score(ctx: ViolationContext) -> Any:
    if ctx.risk_score is not None:
        return ctx.risk_score
    if ctx.employee_risk_score is not None:
        return ctx.employee_risk_score
    return 0.0


FIELD_SELECTORS: dict[str, Callable[[ViolationContext], Any]] = {
    "risk_score": _risk_score,
    "violation_severity": lambda ctx: ctx.severity,
    "severity": lambda ctx: ctx.severity,
    "violation_type": lambda ctx: ctx.violation_type,
    "category": lambda ctx: ctx.violation_type,
    "employee_risk_score": lambda ctx: ctx.employee_risk_score,
    "employee_department": lambda ctx: ctx.employee_department,
    "employee_role": lambda ctx: ctx.employee_role,
    "source": lambda ctx: ctx.source,
    "regulatory_tags": lambda ctx: ctx.regulatory_tags,
    "frequency": lambda ctx: ctx.frequency,
    "external_recipients": lambda ctx: ctx.metadata.get("external_recipients", 0),
    "outside_business_hours": lambda ctx: ctx.outside_business_hours,
    "time_based": lambda ctx: ctx.outside_business_hours,
    "any_violation": lambda ctx: True,
}

METADATA_PREFIX = "metadata."


def select_field(selector: str, ctx: ViolationContext) -> Any:
    """Resolve a field selector. Returns MISSING for unknown selectors."""
    if selector.startswith(METADATA_PREFIX):
        return ctx.metadata.get(selector[len(METADATA_PREFIX):], MISSING)
    fn = FIELD_SELECTORS.get(selector)
    if fn is None:
        return MISSING
    return fn(ctx)


class _Uncomparable(Exception):
    """Operand could not be coerced for the requested comparison."""


def _to_number(value: Any, reference: Any = None) -> float:
    if isinstance(value, ViolationSeverity):
        return float(value.rank)
    if isinstance(reference, ViolationSeverity) and isinstance(value, str):
        try:
            return float(ViolationSeverity.parse(value).rank)
        except ValueError:
            pass
    if isinstance(value, bool):
        raise _Uncomparable(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise _Uncomparable(value)


def _to_text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise _Uncomparable(value)


@lru_cache(maxsize=512)
def _parse_collection_text(raw: str) -> tuple[str, ...]:
    text = raw.strip()
    if text.startswith("["):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            raise _Uncomparable(raw)
        if not isinstance(decoded, list):
            raise _Uncomparable(raw)
        return tuple(_to_text(item) for item in decoded)
    return tuple(part.strip() for part in text.split(",") if part.strip())


def parse_collection(value: Any) -> tuple[str, ...]:
    """Decode an `in` comparison value: JSON array, comma list or a sequence."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_to_text(item) for item in value)
    if isinstance(value, str):
        return _parse_collection_text(value)
    raise _Uncomparable(value)


def _is_collection(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool):
        return actual == _to_bool(expected)
    if isinstance(actual, ViolationSeverity):
        try:
            return actual is ViolationSeverity.parse(expected)
        except ValueError:
            return False
    if isinstance(actual, (int, float)):
        return float(actual) == _to_number(expected)
    return _to_text(actual) == _to_text(expected)


def _contains(actual: Any, expected: Any) -> bool:
    if _is_collection(actual):
        return _to_text(expected) in {_to_text(item) for item in actual}
    return _to_text(expected) in _to_text(actual)


def _in(actual: Any, expected: Any) -> bool:
    members = set(parse_collection(expected))
    if _is_collection(actual):
        return any(_to_text(item) in members for item in actual)
    return _to_text(actual) in members


def _exists(actual: Any) -> bool:
    if actual is None or actual is MISSING:
        return False
    if isinstance(actual, str) or _is_collection(actual):
        return len(actual) > 0
    return True


def _compare(op: ConditionOperator, actual: Any, expected: Any) -> bool:
    if op is ConditionOperator.EXISTS:
        return _exists(actual)
    if op is ConditionOperator.NOT_EXISTS:
        return not _exists(actual)
    if actual is None:
        return False

    if op is ConditionOperator.EQUALS:
        return _equals(actual, expected)
    if op is ConditionOperator.NOT_EQUALS:
        return not _equals(actual, expected)
    if op is ConditionOperator.CONTAINS:
        return _contains(actual, expected)
    if op is ConditionOperator.NOT_CONTAINS:
        return not _contains(actual, expected)
    if op is ConditionOperator.IN:
        return _in(actual, expected)
    if op is ConditionOperator.NOT_IN:
        return not _in(actual, expected)

    left = _to_number(actual)
    right = _to_number(expected, reference=actual)
    if op is ConditionOperator.GREATER_THAN:
        return left > right
    if op is ConditionOperator.LESS_THAN:
        return left < right
    if op is ConditionOperator.GREATER_OR_EQUAL:
        return left >= right
    if op is ConditionOperator.LESS_OR_EQUAL:
        return left <= right
    raise _Uncomparable(op)


def evaluate(condition: Condition, context: ViolationContext) -> bool:
    """Evaluate one condition. Total: malformed input yields False plus a warning."""
    try:
        op = ConditionOperator.parse(condition.operator)
    except ValueError:
        logger.warning(
            "Condition skipped: unknown operator %r on field %r",
            condition.operator,
            condition.field,
            extra={"diagnostic": "unknown_operator", "violation_id": context.violation_id},
        )
        return False

    actual = select_field(condition.field, context)
    if actual is MISSING and op not in (ConditionOperator.EXISTS, ConditionOperator.NOT_EXISTS):
        logger.warning(
            "Condition skipped: unknown field selector %r",
            condition.field,
            extra={"diagnostic": "unknown_field", "violation_id": context.violation_id},
        )
        return False

    try:
        return _compare(op, actual, condition.value)
    except _Uncomparable:
        logger.warning(
            "Condition %s %s %r: comparison value not comparable with %r, treating as false",
            condition.field,
            op.value,
            condition.value,
            actual,
            extra={"diagnostic": "malformed_value", "violation_id": context.violation_id},
        )
        return False


def evaluate_all(
    conditions: Sequence[Condition],
    logical_operator: str,
    context: ViolationContext,
) -> tuple[bool, list[Condition]]:
    """
    Combine a policy's conditions.

    Every condition is evaluated (no short-circuit) so the matched list is
    complete for the audit trail. An empty set matches everything.

    Returns:
        (matched, conditions that evaluated true)
    """
    if not conditions:
        return True, []

    matched = [c for c in conditions if evaluate(c, context)]

    if str(logical_operator).upper() == LogicalOperator.OR.value:
        return bool(matched), matched
    return len(matched) == len(conditions), matched
