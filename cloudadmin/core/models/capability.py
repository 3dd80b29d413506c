"""
Capability model — a registered administrative feature.

A capability declares who it is (id, display name, category), what the
interpreter needs to run it (PowerShell modules) and what the signed-in
operator must be allowed to do (authorization scopes).  Descriptors are
built once at startup and never mutated.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

AvailabilityCheck = Callable[[], Awaitable[bool]]


class CapabilityDescriptor(BaseModel):
    """Static declaration of an administrative feature."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    category: str
    description: str = ""
    required_modules: tuple[str, ...] = ()
    required_scopes: tuple[str, ...] = ()

    # Not serialized: a coroutine function telling whether the
    # capability can run right now (session up, permissions, ...).
    availability_check: AvailabilityCheck | None = Field(
        default=None, exclude=True, repr=False,
    )

    @field_validator("id", "display_name", "category")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    async def is_available(self) -> bool:
        """Run the availability check.  Never raises."""
        if self.availability_check is None:
            return True
        try:
            return bool(await self.availability_check())
        except Exception as e:
            logger.error("Availability check for '%s' failed: %s", self.id, e)
            return False
