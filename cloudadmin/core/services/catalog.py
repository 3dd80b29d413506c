"""
Built-in capability catalog.

Exchange Online audits need the ExchangeOnlineManagement module; the
directory and device views go through Microsoft Graph.  Every capability
is available when the engine can create its PowerShell session.
"""

from __future__ import annotations

from cloudadmin.core.engine.executor import CommandEngine
from cloudadmin.core.models.capability import CapabilityDescriptor
from cloudadmin.core.services.capabilities import CapabilityRegistry

EXCHANGE_MODULE = "ExchangeOnlineManagement"
GRAPH_MODULE = "Microsoft.Graph"

# (id, display name, category, description, module, scopes)
_CATALOG: list[tuple[str, str, str, str, str, tuple[str, ...]]] = [
    (
        "room-permissions", "Room Calendar Permissions", "Exchange",
        "Analyze room resource mailbox calendar permissions and delegations.",
        EXCHANGE_MODULE, ("Calendars.Read.All", "User.Read.All"),
    ),
    (
        "room-booking", "Room Booking Audit", "Exchange",
        "Review room resource mailbox bookings and calendar utilization.",
        EXCHANGE_MODULE, ("Calendars.Read.All", "AuditLog.Read.All"),
    ),
    (
        "calendar-diagnostic", "Calendar Diagnostic Logs", "Exchange",
        "Analyze calendar operations and event changes from unified audit logs.",
        EXCHANGE_MODULE, ("AuditLog.Read.All",),
    ),
    (
        "mailbox-permissions", "Mailbox Permissions", "Exchange",
        "Analyze mailbox delegations, send-on-behalf, and inbox rule permissions.",
        EXCHANGE_MODULE, ("Mail.Read.All", "User.Read.All"),
    ),
    (
        "mail-forwarding", "Mail Forwarding Audit", "Exchange",
        "Identify mail forwarding rules and delivery settings.",
        EXCHANGE_MODULE, ("Mail.Read.All",),
    ),
    (
        "shared-mailbox", "Shared Mailbox Explorer", "Exchange",
        "Discover shared mailboxes and their member access.",
        EXCHANGE_MODULE, ("Mail.Read.All", "User.Read.All"),
    ),
    (
        "group-explorer", "Group Membership Explorer", "Exchange",
        "Analyze Microsoft 365 group membership and owners.",
        EXCHANGE_MODULE, ("Group.Read.All",),
    ),
    (
        "azuread-users", "Azure AD Users", "Azure AD",
        "Browse Azure AD users: list all users with account status, job title, and user type.",
        GRAPH_MODULE, ("User.Read.All", "Directory.Read.All"),
    ),
    (
        "intune-devices", "Intune Devices", "Intune",
        "List managed devices with compliance state, operating system and last sync time.",
        GRAPH_MODULE, ("DeviceManagementManagedDevices.Read.All",),
    ),
]


def build_catalog(engine: CommandEngine | None = None) -> list[CapabilityDescriptor]:
    """Descriptors for every built-in capability.

    Args:
        engine: When given, each capability's availability check is
            ``engine.try_initialize``.
    """
    check = engine.try_initialize if engine is not None else None
    return [
        CapabilityDescriptor(
            id=cap_id,
            display_name=display_name,
            category=category,
            description=description,
            required_modules=(module,),
            required_scopes=scopes,
            availability_check=check,
        )
        for cap_id, display_name, category, description, module, scopes in _CATALOG
    ]


def register_all(registry: CapabilityRegistry, engine: CommandEngine | None = None) -> CapabilityRegistry:
    for capability in build_catalog(engine):
        registry.register(capability)
    return registry
