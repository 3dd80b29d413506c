"""
Command engine — the single owner of the PowerShell session.

The engine creates one long-lived interpreter session, connects it to
Exchange Online on first use, and runs commands against it one at a
time.  Every public operation is a coroutine; blocking session calls run
on a worker thread.

Flow:
    execute_command → validate → ensure_connected → lock → attempt loop → CommandResult

Attempt loop:
    invoke → scan streams for device codes → errors?
        none       → return records
        terminal   → raise CommandError
        transient  → back off (50, 100, 200 ms) and retry, up to max_attempts
    exhausted      → raise RetriesExhaustedError

A disconnect marker in the error text clears the connection flag so the
*next* command re-authenticates; the command that saw it still fails.
A session whose interpreter died (crash, or killed by a cancellation)
no longer counts as connected; a retry that finds it restarted
reconnects first.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any

from cloudadmin.adapters.base import Invocation, InterpreterSession, SessionFactory, SessionOptions
from cloudadmin.adapters.shell.pwsh import pwsh_session_factory
from cloudadmin.core.engine.errors import (
    CloudAdminError,
    CommandError,
    CommandTimeoutError,
    DisposedError,
    ModuleMissingError,
    NotInitializedError,
    RetriesExhaustedError,
)
from cloudadmin.core.engine.paths import configure_interpreter_paths
from cloudadmin.core.models.command import CommandRequest, CommandResult, InvocationOutput, StreamMessages
from cloudadmin.core.models.settings import EngineSettings
from cloudadmin.core.reliability.retry_policy import (
    FailureKind,
    RetryState,
    classify_exception,
    classify_records,
    is_disconnect,
)
from cloudadmin.core.services.auth import AuthProvider
from cloudadmin.core.services.prompts import Prompter

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

DEVICE_CODE_TITLE = "Exchange Online Device Code"
INTERACTIVE_AUTH_TITLE = "Exchange Online Authentication"
INTERACTIVE_AUTH_MESSAGE = (
    "A browser window will open for Exchange Online authentication.\n\n"
    "Please sign in with your Exchange Online admin account and authorize the connection."
)


def is_device_code_message(message: str) -> bool:
    """Whether a diagnostic message carries an out-of-band sign-in code."""
    text = message.lower()
    return (
        "devicelogin" in text
        or "code:" in text
        or ("https://" in text and "code" in text)
    )


def default_base_dir() -> Path:
    """Directory a bundled runtime would be shipped next to."""
    if getattr(sys, "frozen", False):
        return Path(getattr(sys, "_MEIPASS", Path(sys.executable).parent))
    return Path(__file__).resolve().parents[3]


class CommandEngine:
    """Thread-safe, retrying, auto-connecting command execution.

    Args:
        auth: Supplies the identity hint used to pre-fill the connect command.
        settings: Limits and retry policy.
        session_factory: Builds the interpreter session (default: ``pwsh``).
        prompter: Receives device-code and interactive sign-in notices.
            Without one they are only logged.
        base_dir: Where to look for a bundled PowerShell runtime.
        sleep: Backoff sleep; replaced in tests to observe delays.
    """

    def __init__(
        self,
        auth: AuthProvider,
        *,
        settings: EngineSettings | None = None,
        session_factory: SessionFactory | None = None,
        prompter: Prompter | None = None,
        base_dir: Path | None = None,
        sleep: Sleep | None = None,
    ):
        self._auth = auth
        self._settings = settings or EngineSettings()
        self._session_factory = session_factory or pwsh_session_factory
        self._prompter = prompter
        self._base_dir = base_dir or default_base_dir()
        self._sleep: Sleep = sleep or asyncio.sleep

        self._lock = asyncio.Lock()
        self._session: InterpreterSession | None = None
        self._initialized = False
        self._connected = False
        self._connected_generation: int | None = None
        self._disposed = False
        self._execution_policy_bypass = self._settings.execution_policy_bypass

    # ── State ────────────────────────────────────────────────────

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_connected(self) -> bool:
        return self._connection_live()

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def enable_execution_policy_bypass(self) -> None:
        """Relax the execution policy for the session created by ``initialize``."""
        self._execution_policy_bypass = True

    # ── Lifecycle ────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create the interpreter session.  Idempotent."""
        self._check_disposed()
        async with self._lock:
            self._check_disposed()
            if self._initialized:
                return

            configure_interpreter_paths(self._base_dir)

            options = SessionOptions(
                interpreter=self._settings.interpreter,
                execution_policy_bypass=self._execution_policy_bypass,
            )
            if options.execution_policy_bypass:
                logger.info("PowerShell execution policy bypass enabled for this session.")

            session = self._session_factory(options)
            await asyncio.to_thread(session.open)
            self._session = session
            self._initialized = True
            logger.info("PowerShell session created (%s).", session.name)

    async def try_initialize(self) -> bool:
        """``initialize`` as an availability check: False instead of raising."""
        try:
            await self.initialize()
        except CloudAdminError as e:
            logger.error("PowerShell availability check failed: %s", e)
            return False
        return True

    def dispose(self) -> None:
        """Release the session.  Safe to call more than once.

        A command still in flight is stopped first and fails.
        """
        if self._disposed:
            return
        self._disposed = True
        self._connected = False
        session, self._session = self._session, None
        if session is not None:
            try:
                if self._lock.locked():
                    session.stop()
                session.close()
            except Exception as e:
                logger.warning("Error while closing %s session: %s", session.name, e)
        logger.info("Command engine disposed.")

    async def aclose(self) -> None:
        await asyncio.to_thread(self.dispose)

    async def __aenter__(self) -> CommandEngine:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ── Connection ───────────────────────────────────────────────

    async def ensure_connected(self) -> None:
        """Connect to Exchange Online unless already connected."""
        self._check_disposed()
        if self._connection_live():
            return
        async with self._lock:
            self._check_disposed()
            if self._connection_live():
                return
            await self._connect()

    @property
    def session_generation(self) -> int | None:
        """Generation of the running interpreter, None if it is gone.

        Anything holding remote state in the session compares this with
        the value it saw when it connected.
        """
        session = self._session
        if session is None or not session.alive:
            return None
        return session.generation

    def _connection_live(self) -> bool:
        return self._connected and self.session_generation == self._connected_generation

    def _connect_invocation(self, identity_hint: str | None) -> Invocation:
        params: dict[str, Any] = {
            "ShowBanner": False,
            "SkipLoadingCmdletHelp": True,
            "ShowProgress": False,
        }
        if identity_hint and identity_hint.strip():
            params["UserPrincipalName"] = identity_hint
        return Invocation(command=self._settings.connect_command, params=params)

    async def _connect(self) -> None:
        session = self._require_session()
        hint = self._auth.identity_hint()
        logger.info("Connecting to Exchange Online.")

        try:
            await self._execute(self._connect_invocation(hint), allow_reconnect=False, max_attempts=1)
        except CloudAdminError as e:
            logger.info(
                "Connection with user context failed: %s. Falling back to interactive authentication.",
                e,
            )
        else:
            self._mark_connected(session)
            logger.info("Exchange Online connection established via user context.")
            return

        await self._notify(INTERACTIVE_AUTH_TITLE, INTERACTIVE_AUTH_MESSAGE)
        try:
            await self._execute(self._connect_invocation(None), allow_reconnect=False, max_attempts=1)
        except CloudAdminError as e:
            raise CommandError(
                "Failed to establish Exchange Online connection.",
                command=self._settings.connect_command,
                output=getattr(e, "output", None) or str(e),
            ) from e

        self._mark_connected(session)
        logger.info("Exchange Online connection established after interactive authentication.")

    def _mark_connected(self, session: InterpreterSession) -> None:
        self._connected = True
        self._connected_generation = session.generation

    # ── Commands ─────────────────────────────────────────────────

    async def execute_command(
        self,
        name: str,
        params: Mapping[str, Any] | None = None,
    ) -> CommandResult:
        """Run *name* against Exchange Online, connecting first if needed."""
        self._check_disposed()
        request = self._validated(name, params)

        await self.ensure_connected()

        logger.debug("Executing PowerShell command (Exchange): %s", request.name)
        async with self._lock:
            self._check_disposed()
            return await self._execute(
                Invocation(command=request.name, params=request.params),
                allow_reconnect=True,
            )

    async def execute_raw_command(
        self,
        name: str,
        params: Mapping[str, Any] | None = None,
    ) -> CommandResult:
        """Run *name* without touching the Exchange Online connection.

        For capabilities that manage their own remote channel.
        """
        self._check_disposed()
        if not self._initialized:
            raise NotInitializedError("PowerShell session not initialized. Call initialize() first.")
        request = self._validated(name, params)

        logger.debug("Executing PowerShell command (raw): %s", request.name)
        async with self._lock:
            self._check_disposed()
            return await self._execute(
                Invocation(command=request.name, params=request.params),
                allow_reconnect=False,
            )

    async def require_module(self, module: str) -> None:
        """Single-shot check that *module* is available to the session.

        Raises:
            ModuleMissingError: The module is not installed.
            CommandTimeoutError: The probe exceeded ``module_probe_timeout``.
        """
        self._check_disposed()
        timeout = self._settings.module_probe_timeout
        invocation = Invocation(
            command="Get-Module",
            params={"ListAvailable": None, "Name": module},
            error_action=None,
        )
        async with self._lock:
            session = self._require_session()
            try:
                output = await asyncio.wait_for(self._invoke(session, invocation), timeout)
            except TimeoutError as e:
                raise CommandTimeoutError(
                    f"Module check for {module} timed out after {timeout} seconds.", timeout,
                ) from e
            except (CloudAdminError, OSError) as e:
                raise CommandError(f"Module check for {module} failed.", command="Get-Module", output=str(e)) from e

        if output.errors:
            raise CommandError(
                f"Module check for {module} failed.",
                command="Get-Module",
                output="\n".join(str(r) for r in output.errors),
            )
        if not output.records:
            raise ModuleMissingError(module)
        logger.debug("Module %s is available", module)

    # ── Internals ────────────────────────────────────────────────

    def _validated(self, name: str, params: Mapping[str, Any] | None) -> CommandRequest:
        request = CommandRequest(name=name or "", params=dict(params or {}))
        request.validate_limits(
            self._settings.max_command_name_length,
            self._settings.max_parameter_count,
        )
        return request

    def _check_disposed(self) -> None:
        if self._disposed:
            raise DisposedError("CommandEngine has been disposed.")

    def _require_session(self) -> InterpreterSession:
        if not self._initialized or self._session is None:
            raise NotInitializedError("PowerShell session not initialized.")
        return self._session

    async def _notify(self, title: str, message: str) -> None:
        if self._prompter is None:
            logger.warning("%s: %s", title, message)
            return
        await asyncio.to_thread(self._prompter.notify, title, message)

    async def _invoke(self, session: InterpreterSession, invocation: Invocation) -> InvocationOutput:
        try:
            return await asyncio.to_thread(session.invoke, invocation)
        except asyncio.CancelledError:
            logger.info("Cancelling in-flight command %s", invocation.command)
            session.stop(invocation)
            raise

    async def _surface_device_codes(self, streams: StreamMessages) -> None:
        for message in streams.all_messages():
            if not message.strip():
                continue
            logger.info("PowerShell output: %s", message)
            if is_device_code_message(message):
                await self._notify(DEVICE_CODE_TITLE, message)

    async def _execute(
        self,
        invocation: Invocation,
        *,
        allow_reconnect: bool,
        max_attempts: int | None = None,
    ) -> CommandResult:
        """Attempt loop shared by every public path.  Caller holds the lock."""
        session = self._require_session()
        command = invocation.command
        state = RetryState(
            max_attempts=max_attempts or self._settings.max_attempts,
            base_delay=self._settings.retry_base_delay,
        )
        started = time.monotonic()

        while True:
            attempt = state.begin_attempt()
            try:
                output = await self._invoke(session, invocation)
            except Exception as e:
                if classify_exception(e) is FailureKind.TERMINAL:
                    raise CommandError(
                        f"PowerShell command '{command}' execution failed: {e}",
                        command=command,
                        output=str(e),
                    ) from e
                logger.warning(
                    "Transient failure running %s (attempt %d/%d): %s",
                    command, attempt, state.max_attempts, e,
                )
                state.record_failure(e)
            else:
                await self._surface_device_codes(output.streams)

                if not output.errors:
                    return CommandResult(
                        command=command,
                        records=output.records,
                        messages=output.streams,
                        attempts=attempt,
                        duration_ms=int((time.monotonic() - started) * 1000),
                    )

                text = "\n".join(str(r) for r in output.errors)
                kind = classify_records(output.errors)
                error = CommandError(
                    f"PowerShell command '{command}' failed.",
                    command=command,
                    output=text,
                    transient=kind is FailureKind.TRANSIENT,
                )

                if allow_reconnect and is_disconnect(text, self._settings.connect_command):
                    logger.warning("Remote connection lost; the next command will reconnect.")
                    self._connected = False

                if kind is FailureKind.TERMINAL:
                    raise error

                logger.warning(
                    "Transient error from %s (attempt %d/%d): %s",
                    command, attempt, state.max_attempts, text,
                )
                state.record_failure(error)

            if not state.should_retry:
                break
            await self._sleep(state.next_delay())
            self._check_disposed()

            if allow_reconnect and self._connected and not self._connection_live():
                logger.warning("%s session restarted; reconnecting before retrying %s.", session.name, command)
                await self._connect()

        last = state.last_error
        raise RetriesExhaustedError(
            f"PowerShell command '{command}' failed after {state.attempt} attempt(s).",
            command=command,
            output=getattr(last, "output", None) or str(last),
            transient=True,
        ) from last
