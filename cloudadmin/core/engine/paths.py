"""
Interpreter paths — let a bundled PowerShell find its built-in modules.

When cloudadmin ships with its own PowerShell runtime, the built-in
modules live under ``runtimes/<rid>/lib/<tfm>/Modules`` next to the
application rather than under ``$PSHOME/Modules``.  This module points
``PSHOME`` at the right place and puts that directory first on
``PSModulePath``, followed by the user and system module directories and
whatever was already configured.

Everything here is best-effort: failures are logged and reported as a
``None`` result, never raised.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from pathlib import Path

logger = logging.getLogger(__name__)

_FRAMEWORKS = ("net8.0", "net9.0")


def _runtime_id() -> str:
    if sys.platform.startswith("win"):
        return "win"
    if sys.platform == "darwin":
        return "osx"
    return "unix"


def candidate_module_dirs(base_dir: Path) -> list[Path]:
    """Directories that may hold the bundled built-in modules, in priority order."""
    rid = _runtime_id()
    candidates = [base_dir / "runtimes" / rid / "lib" / tfm / "Modules" for tfm in _FRAMEWORKS]
    if rid != "win":
        candidates += [base_dir / "runtimes" / "win" / "lib" / tfm / "Modules" for tfm in _FRAMEWORKS]
    candidates.append(base_dir / "Modules")
    return candidates


def standard_module_dirs(env: MutableMapping[str, str]) -> list[Path]:
    """User and system module directories for this platform."""
    home = Path(env.get("HOME") or env.get("USERPROFILE") or Path.home())
    if _runtime_id() == "win":
        documents = home / "Documents"
        program_files = Path(env.get("ProgramFiles", r"C:\Program Files"))
        system_root = Path(env.get("SystemRoot", r"C:\Windows"))
        return [
            documents / "PowerShell" / "Modules",
            documents / "WindowsPowerShell" / "Modules",
            program_files / "PowerShell" / "Modules",
            system_root / "System32" / "WindowsPowerShell" / "v1.0" / "Modules",
        ]
    return [
        home / ".local" / "share" / "powershell" / "Modules",
        Path("/usr/local/share/powershell/Modules"),
        Path("/opt/microsoft/powershell/7/Modules"),
    ]


def _merge_paths(parts: list[str], existing: str) -> list[str]:
    merged: list[str] = []
    seen: set[str] = set()
    for part in [*parts, *existing.split(os.pathsep)]:
        if not part or part.casefold() in seen:
            continue
        seen.add(part.casefold())
        merged.append(part)
    return merged


def configure_interpreter_paths(
    base_dir: Path,
    env: MutableMapping[str, str] | None = None,
) -> Path | None:
    """Set PSHOME and PSModulePath for a bundled runtime.

    Args:
        base_dir: Application base directory to search from.
        env: Environment to update (default: ``os.environ``).

    Returns:
        The built-in modules directory that was configured, or None when
        none was found or the update failed.
    """
    env = os.environ if env is None else env
    logger.debug("Application base directory: %s", base_dir)

    try:
        modules_dir = next((c for c in candidate_module_dirs(base_dir) if c.is_dir()), None)
        if modules_dir is None:
            logger.info(
                "No bundled PowerShell Modules directory under %s; "
                "using the interpreter defaults.",
                base_dir,
            )
            return None

        logger.info("PowerShell built-in modules directory: %s", modules_dir)
        env["PSHOME"] = str(modules_dir.parent)

        extra = [str(d) for d in standard_module_dirs(env) if d.is_dir()]
        parts = _merge_paths([str(modules_dir), *extra], env.get("PSModulePath", ""))
        env["PSModulePath"] = os.pathsep.join(parts)
        logger.info("PSModulePath configured (%d entries). First: %s", len(parts), parts[0])
        return modules_dir
    except OSError as e:
        logger.warning("Failed to configure PowerShell paths: %s", e)
        return None
