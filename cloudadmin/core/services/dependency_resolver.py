"""
Dependency resolver — which PowerShell modules do the capabilities need?

The required set is derived from the registered capabilities every run,
so adding a capability automatically changes what gets checked.  There
is no hardcoded module list.

Flow:
    capabilities → required modules → runtime check → probe each module
        → confirmation step (always shown) → install selected → availability map

Probes fail closed: any error or timeout counts as "not installed".
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable

from cloudadmin.adapters.shell.runner import ProbeResult, Runner, powershell_command, quote_ps, run_bounded
from cloudadmin.core.engine.errors import CommandTimeoutError, InstallError, RuntimeCheckError
from cloudadmin.core.models.availability import ModuleAvailability
from cloudadmin.core.models.capability import CapabilityDescriptor
from cloudadmin.core.models.settings import ResolverSettings
from cloudadmin.core.services.prompts import Prompter

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")
_NO_MATCH_MARKER = "No match found"
_RUNTIME_DOWNLOAD = "https://aka.ms/powershell"


def required_modules(capabilities: Iterable[CapabilityDescriptor]) -> list[str]:
    """Union of every capability's modules, case-insensitively unique, sorted."""
    seen: dict[str, str] = {}
    for capability in capabilities:
        for module in capability.required_modules:
            name = module.strip()
            if name and name.casefold() not in seen:
                seen[name.casefold()] = name
    return sorted(seen.values(), key=str.casefold)


def parse_runtime_version(output: str) -> tuple[int, int, int] | None:
    """Extract ``(major, minor, patch)`` from ``pwsh --version`` output."""
    match = _VERSION_PATTERN.search(output or "")
    if not match:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)


class DependencyResolver:
    """Check and install the PowerShell modules capabilities depend on.

    Args:
        prompter: Shows the module list and collects install choices.
        settings: Timeouts, module host and install-failure policy.
        runner: Bounded subprocess runner (replaced in tests).
    """

    def __init__(
        self,
        prompter: Prompter,
        settings: ResolverSettings | None = None,
        runner: Runner = run_bounded,
    ):
        self._prompter = prompter
        self._settings = settings or ResolverSettings()
        self._runner = runner

    # ── Runtime ──────────────────────────────────────────────────

    def check_runtime(self) -> tuple[int, int, int]:
        """Verify the PowerShell host exists and is recent enough.

        Raises:
            RuntimeCheckError: Missing, unresponsive, unparsable or too old.
        """
        host = self._settings.module_host
        timeout = self._settings.runtime_timeout
        result = self._runner([host, "--version"], timeout=timeout)

        if result.timed_out:
            raise RuntimeCheckError(f"PowerShell runtime check timed out after {timeout} seconds.")
        if not result.ok:
            raise RuntimeCheckError(
                f"PowerShell ({host}) is not installed or not in PATH: {result.error}. "
                f"Download PowerShell {self._settings.min_runtime_major} or later from: {_RUNTIME_DOWNLOAD}"
            )

        output = result.stdout.strip()
        version = parse_runtime_version(output)
        logger.info("PowerShell runtime detected: %s", output or "(no output)")
        if version is None or version[0] < self._settings.min_runtime_major:
            raise RuntimeCheckError(
                f"cloudadmin requires PowerShell {self._settings.min_runtime_major}.0 or later. "
                f"Found: {output or 'unknown'}. Download from: {_RUNTIME_DOWNLOAD}"
            )
        return version

    # ── Modules ──────────────────────────────────────────────────

    def is_module_installed(self, module: str) -> bool:
        """Probe the local module registry.  Never raises."""
        script = (
            f"Get-Module -ListAvailable -Name {quote_ps(module)} "
            "| Select-Object -First 1 | Out-String"
        )
        logger.debug("Checking PowerShell module via Get-Module -ListAvailable: %s", module)
        try:
            result = self._runner(
                powershell_command(self._settings.module_host, script),
                timeout=self._settings.probe_timeout,
            )
        except Exception as e:
            logger.info("Error checking module %s: %s", module, e)
            return False

        if result.timed_out:
            logger.info("Module check for %s timed out", module)
            return False
        output = result.stdout.strip()
        return bool(output) and _NO_MATCH_MARKER not in output

    def install_module(self, module: str) -> ProbeResult:
        """Install *module* for the current user.

        Raises:
            CommandTimeoutError: The installer exceeded ``install_timeout``.
            InstallError: Non-zero exit or error output.
        """
        logger.info("Installing PowerShell module: %s", module)
        script = (
            f"Install-Module -Name {quote_ps(module)} -Scope CurrentUser "
            "-Force -AllowClobber -ErrorAction Stop; "
            "Write-Output 'Installation completed successfully.'"
        )
        timeout = self._settings.install_timeout
        result = self._runner(
            powershell_command(self._settings.module_host, script),
            timeout=timeout,
        )

        if result.timed_out:
            raise CommandTimeoutError(
                f"Module installation timed out after {timeout} seconds.", timeout,
            )

        logger.info("Module install output for %s:\n%s", module, result.stdout.strip())
        errors = result.stderr.strip()
        if not result.ok or errors:
            logger.error("Module install errors for %s:\n%s", module, errors or result.error)
            raise InstallError(module, errors or result.error)

        logger.info("Successfully installed module: %s", module)
        return result

    # ── Resolve ──────────────────────────────────────────────────

    async def resolve(self, capabilities: Iterable[CapabilityDescriptor]) -> ModuleAvailability:
        """Check, confirm and install; return the final availability map."""
        logger.info("Checking runtime dependencies...")
        modules = required_modules(capabilities)
        logger.debug("Required PowerShell modules derived from capabilities: %s", modules)

        if not modules:
            logger.info("No PowerShell modules required.")
            return ModuleAvailability()

        await asyncio.to_thread(self.check_runtime)

        probed: dict[str, bool] = {}
        for module in modules:
            installed = await asyncio.to_thread(self.is_module_installed, module)
            probed[module] = installed
            logger.info("Module %s: %s", module, "installed" if installed else "NOT FOUND")
        availability = ModuleAvailability(probed)

        if availability.all_installed:
            logger.info("All required PowerShell modules are satisfied.")

        selected = await asyncio.to_thread(self._prompter.confirm_installs, availability)
        to_install = [m for m in availability.missing if m.casefold() in {s.casefold() for s in selected}]

        installed_now = await self._install_selected(to_install)
        final = availability.with_installed(installed_now)

        logger.info(
            "Final module availability: %s",
            ", ".join(f"{name}={ok}" for name, ok in final.items()),
        )
        return final

    async def _install_selected(self, modules: list[str]) -> list[str]:
        installed: list[str] = []
        for module in modules:
            try:
                await asyncio.to_thread(self.install_module, module)
            except (InstallError, CommandTimeoutError) as e:
                logger.error("Failed to install %s: %s", module, e)
                if self._settings.stop_on_install_error:
                    raise
                await asyncio.to_thread(
                    self._prompter.report_error, "Installation Error", f"Failed to install {module}:\n\n{e}",
                )
                continue
            installed.append(module)
        return installed
