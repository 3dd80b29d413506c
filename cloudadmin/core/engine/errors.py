"""
Engine errors — the failure taxonomy surfaced to callers.

Every error carries enough text for a caller to render a
human-readable message.  ``CommandError.output`` holds the full
diagnostic text reported by the interpreter session.
"""

from __future__ import annotations


class CloudAdminError(Exception):
    """Base class for every error raised by cloudadmin."""


class RequestValidationError(CloudAdminError, ValueError):
    """A command request is malformed.  Never retried; never reaches the session."""


class DisposedError(CloudAdminError, RuntimeError):
    """An operation was attempted on a disposed engine."""


class NotInitializedError(CloudAdminError, RuntimeError):
    """The interpreter session has not been created yet."""


class ModuleMissingError(CloudAdminError):
    """A required PowerShell module is not installed."""

    def __init__(self, module: str, message: str | None = None):
        self.module = module
        super().__init__(
            message
            or f"PowerShell module '{module}' is not installed. "
            f"Install it with: Install-Module -Name {module} -Scope CurrentUser"
        )


class CommandTimeoutError(CloudAdminError, TimeoutError):
    """A bounded wait (process start, process exit, probe) exceeded its budget."""

    def __init__(self, message: str, timeout: float | None = None):
        self.timeout = timeout
        super().__init__(message)


class CommandError(CloudAdminError):
    """The session reported one or more errors for an invocation.

    Attributes:
        command: The command name that failed.
        output: Concatenated error text from the session.
        transient: Whether the failure was classified as retryable.
    """

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        output: str | None = None,
        transient: bool = False,
    ):
        self.command = command
        self.output = output
        self.transient = transient
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.output:
            return f"{base}\n{self.output}"
        return base


class RetriesExhaustedError(CommandError):
    """Every attempt failed with a transient error."""


class InstallError(CloudAdminError):
    """Installing a PowerShell module failed."""

    def __init__(self, module: str, detail: str = ""):
        self.module = module
        self.detail = detail
        message = f"Failed to install {module}."
        if detail:
            message += f"\n\nError:\n{detail}"
        message += (
            "\n\nTo install manually:\n"
            f"  Install-Module -Name {module} -Scope CurrentUser"
        )
        super().__init__(message)


class RuntimeCheckError(CloudAdminError):
    """The host PowerShell runtime is missing or too old."""


class SessionStoppedError(CloudAdminError):
    """The session was stopped while an invocation was in flight."""


class TransportError(CloudAdminError, ConnectionError):
    """The channel to the interpreter process broke mid-invocation."""
