"""
Command models — the engine's request / result contract.

Requests name a PowerShell command and its parameters.  Results carry
the records the command produced (string-keyed property maps whose shape
depends on the command) plus the diagnostic messages captured from the
session's streams.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from cloudadmin.core.engine.errors import RequestValidationError


class CommandRequest(BaseModel):
    """A command name and its named parameters.

    A parameter value of ``None`` is passed as a switch (``-All``).
    """

    name: str
    params: dict[str, Any] = Field(default_factory=dict)

    def validate_limits(self, max_name_length: int, max_parameter_count: int) -> None:
        """Raise RequestValidationError if the request breaks a limit."""
        if not self.name or not self.name.strip():
            raise RequestValidationError("Command name is required.")
        if len(self.name) > max_name_length:
            raise RequestValidationError(
                f"Command name exceeds max length {max_name_length}."
            )
        if len(self.params) > max_parameter_count:
            raise RequestValidationError(
                f"Too many parameters. Max is {max_parameter_count}."
            )


class ErrorRecord(BaseModel):
    """One entry of the session's error stream."""

    message: str
    exception_type: str = ""   # e.g. System.TimeoutException
    category: str = ""         # PowerShell ErrorCategory name

    def __str__(self) -> str:
        return self.message


class StreamMessages(BaseModel):
    """Diagnostic messages grouped by stream."""

    information: list[str] = Field(default_factory=list)
    warning: list[str] = Field(default_factory=list)
    verbose: list[str] = Field(default_factory=list)
    debug: list[str] = Field(default_factory=list)

    def all_messages(self) -> list[str]:
        return [*self.information, *self.warning, *self.verbose, *self.debug]


class InvocationOutput(BaseModel):
    """Everything a single session invocation produced."""

    records: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[ErrorRecord] = Field(default_factory=list)
    streams: StreamMessages = Field(default_factory=StreamMessages)

    @property
    def failed(self) -> bool:
        return bool(self.errors)


class CommandResult(BaseModel):
    """A successful command execution."""

    command: str
    records: list[dict[str, Any]] = Field(default_factory=list)
    messages: StreamMessages = Field(default_factory=StreamMessages)
    attempts: int = 1
    duration_ms: int = 0
