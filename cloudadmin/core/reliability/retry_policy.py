"""
Retry policy — classify failures and schedule exponential backoff.

The engine drives a plain loop over a ``RetryState``:

    state = RetryState(max_attempts=3, base_delay=0.05)
    while True:
        state.begin_attempt()
        ...
        state.record_failure(error)
        if not state.should_retry:
            raise ...
        await sleep(state.next_delay())

Classification is text- and type-based so it can be tested without an
interpreter session.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from cloudadmin.core.engine.errors import CommandTimeoutError, TransportError
from cloudadmin.core.models.command import ErrorRecord

logger = logging.getLogger(__name__)

# Case-insensitive substrings that mark a retryable failure
TRANSIENT_MARKERS = ("temporarily", "timeout", "throttle", "429", "server busy")

# .NET exception types surfaced by PowerShell that mean "try again"
TRANSIENT_EXCEPTION_TYPES = frozenset({
    "System.TimeoutException",
    "System.Net.Http.HttpRequestException",
    "System.Management.Automation.Remoting.PSRemotingTransportException",
})

# Case-insensitive substrings that mean the remote channel dropped
DISCONNECT_MARKERS = ("not connected",)


class FailureKind(StrEnum):
    """Outcome of classifying a failure."""

    TRANSIENT = "transient"
    TERMINAL = "terminal"


def is_transient_exception(exc: BaseException | None) -> bool:
    """Timeouts and transport failures raised by the session itself."""
    if exc is None:
        return False
    return isinstance(exc, (TimeoutError, ConnectionError, CommandTimeoutError, TransportError))


def contains_transient_message(message: str | None) -> bool:
    if not message or not message.strip():
        return False
    text = message.lower()
    return any(marker in text for marker in TRANSIENT_MARKERS)


def is_transient_record(record: ErrorRecord) -> bool:
    if record.exception_type in TRANSIENT_EXCEPTION_TYPES:
        return True
    return contains_transient_message(record.message)


def classify_records(records: Iterable[ErrorRecord]) -> FailureKind:
    """TRANSIENT if any record's cause or text is transient."""
    if any(is_transient_record(r) for r in records):
        return FailureKind.TRANSIENT
    return FailureKind.TERMINAL


def classify_exception(exc: BaseException) -> FailureKind:
    if is_transient_exception(exc):
        return FailureKind.TRANSIENT
    return FailureKind.TERMINAL


def is_disconnect(text: str, connect_command: str = "Connect-ExchangeOnline") -> bool:
    """Whether error text says the remote channel was dropped."""
    lowered = text.lower()
    if connect_command and connect_command.lower() in lowered:
        return True
    return any(marker in lowered for marker in DISCONNECT_MARKERS)


def backoff_delay(attempt: int, base_delay: float = 0.05) -> float:
    """Delay before the retry that follows *attempt* (1-based).

    With the default base: 0.05, 0.1, 0.2 seconds.
    """
    return base_delay * (2 ** max(0, attempt - 1))


@dataclass
class RetryState:
    """Attempt counter for one command execution."""

    max_attempts: int = 3
    base_delay: float = 0.05
    attempt: int = 0
    last_error: BaseException | None = None
    last_kind: FailureKind | None = None

    def begin_attempt(self) -> int:
        self.attempt += 1
        return self.attempt

    def record_failure(self, error: BaseException, kind: FailureKind = FailureKind.TRANSIENT) -> None:
        self.last_error = error
        self.last_kind = kind

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_attempts - self.attempt)

    @property
    def should_retry(self) -> bool:
        return self.last_kind == FailureKind.TRANSIENT and self.attempts_left > 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_delay(self) -> float:
        delay = backoff_delay(self.attempt, self.base_delay)
        logger.debug(
            "Retry scheduled: attempt %d/%d failed, waiting %.3fs",
            self.attempt,
            self.max_attempts,
            delay,
        )
        return delay
