"""
Capability registry — the set of administrative features the tool offers.

Capabilities are registered once at startup.  The dependency resolver
reads ``descriptors`` to work out which PowerShell modules are needed;
the CLI lists them by category.
"""

from __future__ import annotations

import logging

from cloudadmin.core.models.capability import CapabilityDescriptor

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    """Registered capabilities, keyed by id, in registration order."""

    def __init__(self, capabilities: list[CapabilityDescriptor] | None = None):
        self._capabilities: dict[str, CapabilityDescriptor] = {}
        for capability in capabilities or []:
            self.register(capability)

    def register(self, capability: CapabilityDescriptor) -> None:
        if capability.id in self._capabilities:
            logger.warning("Overwriting existing capability: %s", capability.id)
        self._capabilities[capability.id] = capability
        logger.debug("Registered capability: %s", capability.id)

    def get(self, capability_id: str) -> CapabilityDescriptor | None:
        return self._capabilities.get(capability_id)

    def list_all(self) -> list[CapabilityDescriptor]:
        return list(self._capabilities.values())

    def by_category(self, category: str) -> list[CapabilityDescriptor]:
        """Capabilities whose category matches, ignoring case."""
        wanted = category.casefold()
        return [c for c in self._capabilities.values() if c.category.casefold() == wanted]

    def categories(self) -> list[str]:
        seen: dict[str, str] = {}
        for capability in self._capabilities.values():
            seen.setdefault(capability.category.casefold(), capability.category)
        return list(seen.values())

    @property
    def descriptors(self) -> tuple[CapabilityDescriptor, ...]:
        return tuple(self._capabilities.values())

    def __len__(self) -> int:
        return len(self._capabilities)

    def __contains__(self, capability_id: object) -> bool:
        return capability_id in self._capabilities
