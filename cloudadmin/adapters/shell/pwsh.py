"""
pwsh session — a long-lived PowerShell process driven over stdin/stdout.

Each invocation is sent as one line that dot-sources a generated script.
The script splats the parameters onto the command, merges every stream
into the pipeline, sorts the items back into records / errors /
diagnostic streams, and prints a single JSON envelope prefixed with a
per-call end marker.  Anything else the process prints is logged and
ignored.

Module imports and remote connections live in the process, so they
persist across invocations until the process is stopped or dies.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import subprocess
import threading
import uuid
from typing import Any

from cloudadmin.adapters.base import Invocation, InterpreterSession, SessionOptions
from cloudadmin.core.engine.errors import SessionStoppedError, TransportError
from cloudadmin.core.models.command import ErrorRecord, InvocationOutput, StreamMessages

logger = logging.getLogger(__name__)

_MARKER_PREFIX = "__CLOUDADMIN_END_"

_SCRIPT = r"""
$__ca_cmd = [Text.Encoding]::UTF8.GetString([Convert]::FromBase64String('@@COMMAND@@'))
$__ca_params = [Text.Encoding]::UTF8.GetString([Convert]::FromBase64String('@@PARAMS@@')) | ConvertFrom-Json -AsHashtable
if ($null -eq $__ca_params) { $__ca_params = @{} }
foreach ($__ca_key in @($__ca_params.Keys)) {
    if ($null -eq $__ca_params[$__ca_key]) { $__ca_params[$__ca_key] = $true }
}
function __ca_Value($v) {
    if ($null -eq $v) { return $null }
    if ($v -is [string]) { return $v }
    if ($v.GetType().IsPrimitive -or $v -is [decimal]) { return $v }
    if ($v -is [datetime]) { return $v.ToString('o') }
    if ($v -is [System.Collections.IEnumerable]) { return ,@(foreach ($i in $v) { [string]$i }) }
    return [string]$v
}
$__ca_records = [System.Collections.Generic.List[object]]::new()
$__ca_errors = [System.Collections.Generic.List[object]]::new()
$__ca_streams = [ordered]@{
    information = [System.Collections.Generic.List[string]]::new()
    warning = [System.Collections.Generic.List[string]]::new()
    verbose = [System.Collections.Generic.List[string]]::new()
    debug = [System.Collections.Generic.List[string]]::new()
}
try {
    & $__ca_cmd @__ca_params *>&1 | ForEach-Object {
        if ($_ -is [System.Management.Automation.ErrorRecord]) { $__ca_errors.Add($_) }
        elseif ($_ -is [System.Management.Automation.WarningRecord]) { $__ca_streams.warning.Add($_.Message) }
        elseif ($_ -is [System.Management.Automation.VerboseRecord]) { $__ca_streams.verbose.Add($_.Message) }
        elseif ($_ -is [System.Management.Automation.DebugRecord]) { $__ca_streams.debug.Add($_.Message) }
        elseif ($_ -is [System.Management.Automation.InformationRecord]) { $__ca_streams.information.Add([string]$_.MessageData) }
        else { $__ca_records.Add($_) }
    }
} catch {
    $__ca_errors.Add($_)
}
$__ca_out = foreach ($__ca_r in $__ca_records) {
    if ($null -eq $__ca_r) { continue }
    if ($__ca_r -is [string] -or $__ca_r.GetType().IsPrimitive) { [ordered]@{ Value = $__ca_r }; continue }
    $__ca_map = [ordered]@{}
    foreach ($__ca_p in $__ca_r.PSObject.Properties) {
        try { $__ca_map[$__ca_p.Name] = __ca_Value $__ca_p.Value } catch { $__ca_map[$__ca_p.Name] = $null }
    }
    $__ca_map
}
$__ca_err = foreach ($__ca_e in $__ca_errors) {
    [ordered]@{
        message = [string]$__ca_e
        exception_type = $(if ($__ca_e.Exception) { $__ca_e.Exception.GetType().FullName } else { '' })
        category = [string]$__ca_e.CategoryInfo.Category
    }
}
$__ca_envelope = [ordered]@{ records = @($__ca_out); errors = @($__ca_err); streams = $__ca_streams }
[Console]::Out.WriteLine('@@MARKER@@' + (ConvertTo-Json -InputObject $__ca_envelope -Depth 6 -Compress))
[Console]::Out.Flush()
"""


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def build_invocation_script(invocation: Invocation, marker: str) -> str:
    """Render the PowerShell script for one invocation."""
    params_json = json.dumps(invocation.effective_params(), default=str)
    return (
        _SCRIPT.replace("@@COMMAND@@", _b64(invocation.command))
        .replace("@@PARAMS@@", _b64(params_json))
        .replace("@@MARKER@@", marker)
    )


def encode_invocation_line(script: str) -> str:
    """Wrap *script* as a single stdin line that runs it in the session scope."""
    return (
        ". ([ScriptBlock]::Create([Text.Encoding]::UTF8.GetString("
        f"[Convert]::FromBase64String('{_b64(script)}'))))"
    )


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def parse_envelope(payload: str) -> InvocationOutput:
    """Turn the JSON envelope printed by the invocation script into an output.

    Raises:
        TransportError: If the payload is not a JSON object.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise TransportError(f"Malformed session output: {e}") from e
    if not isinstance(data, dict):
        raise TransportError("Malformed session output: expected a JSON object")

    records = [
        r if isinstance(r, dict) else {"Value": r}
        for r in _as_list(data.get("records"))
    ]
    errors = [
        ErrorRecord(
            message=str(e.get("message", "")),
            exception_type=str(e.get("exception_type") or ""),
            category=str(e.get("category") or ""),
        )
        if isinstance(e, dict)
        else ErrorRecord(message=str(e))
        for e in _as_list(data.get("errors"))
    ]
    raw_streams = data.get("streams") or {}
    streams = StreamMessages(**{
        key: [str(m) for m in _as_list(raw_streams.get(key))]
        for key in ("information", "warning", "verbose", "debug")
    })
    return InvocationOutput(records=records, errors=errors, streams=streams)


class PwshSession(InterpreterSession):
    """Long-lived ``pwsh`` process.

    ``invoke`` calls are serialized by an internal lock; ``stop`` kills
    the process so a blocked ``invoke`` returns immediately.  The next
    ``invoke`` starts a fresh process.
    """

    def __init__(self, options: SessionOptions | None = None):
        self._options = options or SessionOptions()
        self._proc: subprocess.Popen[str] | None = None
        self._io_lock = threading.Lock()
        # guards _proc swaps, _current and _aborted against stop()
        self._state_lock = threading.Lock()
        self._current: Invocation | None = None
        self._aborted: Invocation | None = None
        self._stopped = threading.Event()
        self._generation = 0

    @property
    def name(self) -> str:
        return self._options.interpreter

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def alive(self) -> bool:
        return self._alive()

    def _command(self) -> list[str]:
        cmd = [self._options.interpreter, "-NoLogo", "-NoProfile", "-NonInteractive"]
        if self._options.execution_policy_bypass:
            cmd += ["-ExecutionPolicy", "Bypass"]
        return cmd + ["-Command", "-"]

    def _start(self) -> None:
        env = os.environ.copy()
        env.update(self._options.env)
        try:
            proc = subprocess.Popen(
                self._command(),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=env,
            )
        except OSError as e:
            raise TransportError(f"Cannot start {self._options.interpreter}: {e}") from e
        with self._state_lock:
            self._proc = proc
            self._generation += 1
        logger.info(
            "Started %s session (pid %s, generation %d)",
            self._options.interpreter,
            proc.pid,
            self._generation,
        )

    def _alive(self) -> bool:
        proc = self._proc
        return proc is not None and proc.poll() is None

    def open(self) -> None:
        with self._io_lock:
            if not self._alive():
                self._start()

    def _begin(self, invocation: Invocation) -> subprocess.Popen[str]:
        with self._state_lock:
            if self._aborted is invocation:
                self._aborted = None
                raise SessionStoppedError(f"{invocation.command} was stopped before it started")
            self._stopped.clear()
            self._current = invocation
            proc = self._proc
        assert proc is not None and proc.stdin is not None and proc.stdout is not None
        return proc

    def invoke(self, invocation: Invocation) -> InvocationOutput:
        with self._io_lock:
            if not self._alive():
                if self._proc is not None:
                    logger.warning("%s session exited, restarting", self.name)
                self._start()
            proc = self._begin(invocation)
            try:
                return self._exchange(proc, invocation)
            finally:
                with self._state_lock:
                    self._current = None

    def _exchange(self, proc: subprocess.Popen[str], invocation: Invocation) -> InvocationOutput:
        marker = f"{_MARKER_PREFIX}{uuid.uuid4().hex}__"
        line = encode_invocation_line(build_invocation_script(invocation, marker))
        try:
            proc.stdin.write(line + "\n")
            proc.stdin.flush()
        except (BrokenPipeError, OSError) as e:
            if self._stopped.is_set():
                raise SessionStoppedError(f"{invocation.command} was stopped") from e
            raise TransportError(f"Cannot write to {self.name}: {e}") from e

        while True:
            out = proc.stdout.readline()
            if not out:
                if self._stopped.is_set():
                    raise SessionStoppedError(f"{invocation.command} was stopped")
                raise TransportError(f"{self.name} exited during {invocation.command}")
            if out.startswith(marker):
                return parse_envelope(out[len(marker):].strip())
            if out.strip():
                logger.debug("%s: %s", self.name, out.rstrip())

    def stop(self, invocation: Invocation | None = None) -> None:
        with self._state_lock:
            current = self._current
            if invocation is not None and invocation is not current:
                # not started yet: _begin refuses it
                self._aborted = invocation
                return
            if current is not None:
                self._stopped.set()
            proc = self._proc
        if proc is not None and proc.poll() is None:
            logger.info("Stopping %s session (pid %s)", self.name, proc.pid)
            proc.kill()

    def close(self) -> None:
        with self._state_lock:
            proc, self._proc = self._proc, None
        if proc is None or proc.poll() is not None:
            return
        try:
            if proc.stdin is not None:
                proc.stdin.write("exit\n")
                proc.stdin.flush()
            proc.wait(timeout=5)
        except (OSError, subprocess.TimeoutExpired):
            proc.kill()
            proc.wait()
        logger.info("Closed %s session", self.name)


def pwsh_session_factory(options: SessionOptions) -> InterpreterSession:
    """Default session factory used by the engine."""
    return PwshSession(options)
