"""
Fake session — scripted test double for the interpreter session.

Used to exercise the engine without PowerShell.  Outcomes are queued
per command name; each ``invoke`` pops the next one.  An outcome is an
``InvocationOutput`` to return or an exception to raise.  Commands with
nothing queued succeed with no records.

Like a real process, the fake "dies" when stopped or crashed and comes
back under a new generation on the next ``invoke``.
"""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from typing import Any

from cloudadmin.adapters.base import Invocation, InterpreterSession, SessionOptions
from cloudadmin.core.engine.errors import SessionStoppedError
from cloudadmin.core.models.command import ErrorRecord, InvocationOutput, StreamMessages

Outcome = InvocationOutput | BaseException


class FakeSession(InterpreterSession):
    """In-memory session with scripted outcomes and a call log."""

    def __init__(self, options: SessionOptions | None = None, session_name: str = "fake"):
        self.options = options or SessionOptions()
        self._name = session_name
        self._outcomes: dict[str, deque[Outcome]] = defaultdict(deque)
        self._blocking: set[str] = set()
        self._call_log: list[Invocation] = []
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._current: Invocation | None = None
        self._aborted: Invocation | None = None
        self._alive = True
        self._generation = 1
        self.started = threading.Event()
        self.opened = False
        self.closed = False
        self.stop_count = 0
        self.aborted_before_start: list[Invocation] = []

    # ── Scripting ────────────────────────────────────────────────

    def queue(self, command: str, *outcomes: Outcome) -> FakeSession:
        """Queue outcomes for *command*, consumed in order."""
        self._outcomes[command].extend(outcomes)
        return self

    def succeed(self, command: str, records: list[dict[str, Any]] | None = None, **streams: list[str]) -> FakeSession:
        return self.queue(
            command,
            InvocationOutput(records=records or [], streams=StreamMessages(**streams)),
        )

    def fail(self, command: str, *messages: str, exception_type: str = "") -> FakeSession:
        """Queue one invocation that reports error records."""
        return self.queue(
            command,
            InvocationOutput(errors=[
                ErrorRecord(message=m, exception_type=exception_type) for m in messages
            ]),
        )

    def block(self, command: str) -> FakeSession:
        """Make *command* hang until ``stop`` is called."""
        self._blocking.add(command)
        return self

    def crash(self) -> None:
        """Simulate the interpreter exiting on its own."""
        self._alive = False

    # ── Inspection ───────────────────────────────────────────────

    @property
    def call_log(self) -> list[Invocation]:
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls_to(self, command: str) -> list[Invocation]:
        return [c for c in self._call_log if c.command == command]

    # ── InterpreterSession ───────────────────────────────────────

    @property
    def name(self) -> str:
        return self._name

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def alive(self) -> bool:
        return self._alive

    def open(self) -> None:
        self.opened = True

    def invoke(self, invocation: Invocation) -> InvocationOutput:
        with self._state_lock:
            if self._aborted is invocation:
                self._aborted = None
                self.aborted_before_start.append(invocation)
                raise SessionStoppedError(f"Invocation of {invocation.command} was stopped before it started")
            if not self._alive:
                self._alive = True
                self._generation += 1
            self._current = invocation

        try:
            return self._run(invocation)
        finally:
            with self._state_lock:
                self._current = None

    def _run(self, invocation: Invocation) -> InvocationOutput:
        self._call_log.append(invocation)
        self.started.set()

        if invocation.command in self._blocking:
            self._stop_event.wait()
            self._stop_event.clear()
            raise SessionStoppedError(f"Invocation of {invocation.command} was stopped")

        queued = self._outcomes.get(invocation.command)
        if not queued:
            return InvocationOutput()
        outcome = queued.popleft()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def stop(self, invocation: Invocation | None = None) -> None:
        self.stop_count += 1
        with self._state_lock:
            if invocation is not None and invocation is not self._current:
                self._aborted = invocation
                return
            self._alive = False
        self._stop_event.set()

    def close(self) -> None:
        self.closed = True
