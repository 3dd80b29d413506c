"""
Session base — the contract between the engine and an interpreter.

The engine only talks to PowerShell through this interface, never
directly to a process.  A session is long-lived: modules it imports and
remote connections it opens persist across invocations.  Each call gets
a fresh, lightweight ``Invocation``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from cloudadmin.core.models.command import InvocationOutput


class SessionOptions(BaseModel):
    """How to create the interpreter session."""

    interpreter: str = "pwsh"
    execution_policy_bypass: bool = False
    env: dict[str, str] = Field(default_factory=dict)


class Invocation(BaseModel):
    """A single command call against the shared session.

    Parameter values of ``None`` are passed as switches.
    """

    command: str
    params: dict[str, Any] = Field(default_factory=dict)
    error_action: str | None = "Stop"

    def effective_params(self) -> dict[str, Any]:
        params = dict(self.params)
        if self.error_action and "ErrorAction" not in params:
            params["ErrorAction"] = self.error_action
        return params


class InterpreterSession(ABC):
    """Abstract long-lived interpreter session.

    ``invoke`` is blocking and is run on a worker thread by the engine.
    ``stop`` may be called from any thread while ``invoke`` is running
    and must make it return promptly.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Session identifier used in logs."""

    @abstractmethod
    def open(self) -> None:
        """Start the interpreter."""

    @abstractmethod
    def invoke(self, invocation: Invocation) -> InvocationOutput:
        """Run one command and collect records, errors and streams.

        Errors reported by the command belong in the output.  Raising
        is reserved for failures of the session itself (timeouts,
        broken transport, being stopped).
        """

    @abstractmethod
    def stop(self, invocation: Invocation | None = None) -> None:
        """Abort *invocation*, or whatever is in flight when omitted.

        A stop that reaches the session before *invocation* has started
        makes that invocation fail with ``SessionStoppedError`` without
        running.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the interpreter.  Idempotent."""

    @property
    def generation(self) -> int:
        """Bumped every time the underlying interpreter is (re)started.

        Remote connections do not survive a restart, so the engine
        compares generations to know when to re-authenticate.
        """
        return 0

    @property
    def alive(self) -> bool:
        """False once the interpreter has exited or been killed.

        The next ``invoke`` restarts it under a new generation.
        """
        return True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


SessionFactory = Callable[[SessionOptions], InterpreterSession]
