"""
loader.py - Policy Loader.

Loads policy definitions from a YAML document into the policy store.

- The document is validated in full (PolicyDocument) before any write
- Policies are upserted by name; conditions and actions of an existing
  policy are replaced by the document's
- Policies absent from the document are left untouched
- config_hash = SHA-256 of the canonical (sorted-key) JSON of the document,
  logged at every load for the audit trail
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from securewatch.core.clock import utcnow
from securewatch.database import SessionLocal
from securewatch.models import PolicyAction, PolicyCondition, SecurityPolicy
from securewatch.schemas.policy import PolicyDefinition, PolicyDocument

logger = logging.getLogger(__name__)


class PolicyConfigError(ValueError):
    """The policy document is missing, unparseable or invalid."""


@dataclass(frozen=True)
class LoadResult:
    version: str
    config_hash: str
    created: int
    updated: int
    policies: tuple[str, ...]


def config_hash(document: dict[str, Any]) -> str:
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_policy_document(raw: str) -> tuple[PolicyDocument, dict[str, Any]]:
    """Parse and validate YAML text. Returns the model and the raw mapping."""
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise PolicyConfigError(f"Policy config is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise PolicyConfigError("Policy config is not a valid YAML mapping")
    try:
        return PolicyDocument.model_validate(data), data
    except ValidationError as e:
        raise PolicyConfigError(f"Policy config failed validation: {e}") from e


class PolicyLoader:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def load_file(self, path: str | Path) -> LoadResult:
        path = Path(path)
        if not path.exists():
            raise PolicyConfigError(f"Policy config not found: {path}")
        return self.load_text(path.read_text(encoding="utf-8"))

    def load_text(self, raw: str) -> LoadResult:
        document, data = parse_policy_document(raw)
        digest = config_hash(data)

        created = updated = 0
        db = self._session_factory()
        try:
            for definition in document.policies:
                existing = (
                    db.query(SecurityPolicy)
                    .filter(SecurityPolicy.name == definition.name)
                    .one_or_none()
                )
                if existing is None:
                    db.add(self._build(definition))
                    created += 1
                else:
                    self._apply(existing, definition)
                    updated += 1
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        result = LoadResult(
            version=document.version,
            config_hash=digest,
            created=created,
            updated=updated,
            policies=tuple(p.name for p in document.policies),
        )
        logger.info(
            "Policy set loaded: version=%s hash=%s created=%d updated=%d",
            result.version,
            result.config_hash[:16],
            created,
            updated,
        )
        return result

    def _build(self, definition: PolicyDefinition) -> SecurityPolicy:
        policy = SecurityPolicy(name=definition.name, created_at=self._clock())
        self._apply(policy, definition)
        return policy

    def _apply(self, policy: SecurityPolicy, definition: PolicyDefinition) -> None:
        policy.description = definition.description
        policy.is_active = definition.is_active
        policy.priority = definition.priority
        policy.scope = definition.scope.value
        policy.target_type = definition.target_type.value if definition.target_type else None
        policy.target_id = definition.target_id
        policy.logical_operator = definition.logical_operator.value
        policy.updated_at = self._clock()

        # delete-orphan cascade removes the replaced rows
        policy.conditions = [
            PolicyCondition(
                field=c.field,
                operator=c.operator,
                value=c.stored_value(),
                condition_order=i,
            )
            for i, c in enumerate(definition.conditions, start=1)
        ]
        policy.actions = [
            PolicyAction(
                action_type=a.action_type,
                action_config=json.dumps(a.config, sort_keys=True),
                execution_order=i,
                delay_minutes=a.delay_minutes,
                is_enabled=a.enabled,
            )
            for i, a in enumerate(definition.actions, start=1)
        ]
