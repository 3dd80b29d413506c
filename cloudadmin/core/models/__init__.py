"""
Domain models — Pydantic types for cloudadmin.

All models are re-exported here for convenient access:

    from cloudadmin.core.models import CapabilityDescriptor, CommandResult, Settings
"""

from cloudadmin.core.models.availability import ModuleAvailability
from cloudadmin.core.models.capability import CapabilityDescriptor
from cloudadmin.core.models.command import (
    CommandRequest,
    CommandResult,
    ErrorRecord,
    InvocationOutput,
    StreamMessages,
)
from cloudadmin.core.models.settings import (
    AuthSettings,
    EngineSettings,
    ResolverSettings,
    Settings,
)

__all__ = [
    "AuthSettings",
    # capability.py
    "CapabilityDescriptor",
    # command.py
    "CommandRequest",
    "CommandResult",
    "EngineSettings",
    "ErrorRecord",
    "InvocationOutput",
    # availability.py
    "ModuleAvailability",
    "ResolverSettings",
    # settings.py
    "Settings",
    "StreamMessages",
]
