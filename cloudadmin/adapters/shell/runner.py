"""
Bounded subprocess runner — the single place probes and installs spawn processes.

Output is captured, a hard timeout applies, and the child is killed when
the timeout expires.  Failures are reported in the returned
``ProbeResult``; callers decide whether they are fatal.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_TAIL = 4000


class ProbeResult(BaseModel):
    """Outcome of one bounded subprocess run."""

    ok: bool
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    timed_out: bool = False
    error: str = ""


Runner = Callable[..., ProbeResult]


def run_bounded(
    cmd: list[str],
    *,
    timeout: float,
    env_overrides: dict[str, str] | None = None,
) -> ProbeResult:
    """Run *cmd* with captured output and a hard timeout.

    Args:
        cmd: Command list for ``subprocess.run()``.
        timeout: Seconds before the child is killed.
        env_overrides: Extra environment variables.

    Returns:
        ``ProbeResult`` with ``ok=True`` when the exit code is 0.
    """
    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    logger.debug("Running (timeout=%ss): %s", timeout, cmd[0])
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            stdin=subprocess.DEVNULL,
        )
    except subprocess.TimeoutExpired:
        # subprocess.run kills the child before re-raising
        logger.warning("%s timed out after %ss", cmd[0], timeout)
        return ProbeResult(
            ok=False,
            timed_out=True,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            error=f"Command timed out ({timeout}s)",
        )
    except FileNotFoundError:
        return ProbeResult(ok=False, error=f"Executable not found: {cmd[0]}")
    except OSError as e:
        logger.exception("Subprocess error: %s", cmd[0])
        return ProbeResult(ok=False, error=str(e))

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout = result.stdout[-_TAIL:] if result.stdout else ""
    stderr = result.stderr[-_TAIL:] if result.stderr else ""

    if result.returncode == 0:
        return ProbeResult(
            ok=True, returncode=0, stdout=stdout, stderr=stderr, elapsed_ms=elapsed_ms,
        )

    return ProbeResult(
        ok=False,
        returncode=result.returncode,
        stdout=stdout,
        stderr=stderr,
        elapsed_ms=elapsed_ms,
        error=f"Command failed (exit {result.returncode})",
    )


def powershell_command(host: str, script: str) -> list[str]:
    """Command list running *script* in a fresh, profile-less PowerShell."""
    return [host, "-NoLogo", "-NoProfile", "-NonInteractive", "-Command", script]


def quote_ps(value: str) -> str:
    """Quote *value* as a PowerShell single-quoted string literal."""
    return "'" + value.replace("'", "''") + "'"
