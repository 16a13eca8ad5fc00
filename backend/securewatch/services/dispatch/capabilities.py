"""
capabilities.py - Which side-effect stores exist in this deployment.

Computed once at startup from the database catalog and cached for the
lifetime of the dispatcher. A store whose table was not migrated yet is
reported missing and its handlers degrade to logging.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from securewatch.core.errors import CapabilityMissing
from securewatch.services.collaborators.base import Collaborator

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    def __init__(self, available: Iterable[str]) -> None:
        self._available = frozenset(available)

    @classmethod
    def from_engine(cls, engine: Engine) -> "CapabilityRegistry":
        tables = inspect(engine).get_table_names()
        registry = cls(tables)
        logger.info("Capability registry: %d tables available", len(registry._available))
        return registry

    @property
    def available(self) -> frozenset[str]:
        return self._available

    def has(self, capability: Optional[str]) -> bool:
        # Collaborators not backed by a table are always available
        return capability is None or capability in self._available

    def require(self, collaborator: Optional[Collaborator], name: str) -> Collaborator:
        """
        Return the collaborator if it is deployed and its table exists.

        Raises:
            CapabilityMissing: collaborator not configured or table missing
        """
        if collaborator is None:
            raise CapabilityMissing(name)
        if not self.has(collaborator.capability):
            raise CapabilityMissing(collaborator.capability or name)
        return collaborator

    def report(self, collaborators: dict[str, Optional[Collaborator]]) -> list[str]:
        """Log and return the names of configured collaborators whose table is missing."""
        missing = [
            name
            for name, c in collaborators.items()
            if c is not None and not self.has(c.capability)
        ]
        for name in missing:
            logger.warning(
                "Store '%s' unavailable (table %s missing); actions using it will be logged only",
                name,
                collaborators[name].capability,
                extra={"diagnostic": "capability_missing"},
            )
        return missing
