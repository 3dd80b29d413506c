"""
Tests for the dependency resolver — derived module set, runtime check,
probing, confirmation and installation, all against a fake runner.
"""

import pytest

from cloudadmin.adapters.shell.runner import ProbeResult
from cloudadmin.core.engine.errors import CommandTimeoutError, InstallError, RuntimeCheckError
from cloudadmin.core.models.capability import CapabilityDescriptor
from cloudadmin.core.models.settings import ResolverSettings
from cloudadmin.core.services.dependency_resolver import (
    DependencyResolver,
    parse_runtime_version,
    required_modules,
)
from cloudadmin.core.services.prompts import AutoPrompter

EXO = "ExchangeOnlineManagement"
GRAPH = "Microsoft.Graph"


def _cap(cap_id: str, *modules: str) -> CapabilityDescriptor:
    return CapabilityDescriptor(
        id=cap_id, display_name=cap_id.title(), category="Test", required_modules=modules,
    )


class FakeRunner:
    """Scripted stand-in for ``run_bounded``.

    ``installed`` modules answer the probe; ``install_results`` maps a
    module to the ProbeResult its installer returns (default: success).
    """

    def __init__(self, installed=(), runtime="PowerShell 7.4.1", install_results=None):
        self.installed = set(installed)
        self.runtime = runtime
        self.install_results = install_results or {}
        self.calls: list[list[str]] = []

    def _module(self, script: str) -> str:
        return script.split("'")[1]

    def __call__(self, cmd, *, timeout, env_overrides=None):
        self.calls.append(cmd)
        if cmd[-1] == "--version":
            if isinstance(self.runtime, ProbeResult):
                return self.runtime
            return ProbeResult(ok=True, returncode=0, stdout=self.runtime + "\n")
        script = cmd[-1]
        module = self._module(script)
        if script.startswith("Get-Module"):
            if module in self.installed:
                return ProbeResult(ok=True, returncode=0, stdout=f"\nModuleType Version Name\n{module}\n")
            return ProbeResult(ok=True, returncode=0, stdout="")
        if script.startswith("Install-Module"):
            return self.install_results.get(
                module, ProbeResult(ok=True, returncode=0, stdout="Installation completed successfully."),
            )
        raise AssertionError(f"unexpected command: {cmd}")

    @property
    def probes(self) -> list[str]:
        return [self._module(c[-1]) for c in self.calls if c[-1].startswith("Get-Module")]

    @property
    def installs(self) -> list[str]:
        return [self._module(c[-1]) for c in self.calls if c[-1].startswith("Install-Module")]


# ── Required modules ─────────────────────────────────────────────────


class TestRequiredModules:
    def test_union_deduplicated_case_insensitively(self):
        caps = [_cap("a", EXO), _cap("b", "exchangeonlinemanagement", GRAPH), _cap("c")]
        assert required_modules(caps) == [EXO, GRAPH]

    def test_sorted_ignoring_case(self):
        caps = [_cap("a", "zeta", "Alpha", "beta")]
        assert required_modules(caps) == ["Alpha", "beta", "zeta"]

    def test_blank_entries_ignored(self):
        assert required_modules([_cap("a", " ", "")]) == []


class TestRuntimeVersion:
    def test_parse(self):
        assert parse_runtime_version("PowerShell 7.4.1") == (7, 4, 1)
        assert parse_runtime_version("PowerShell 7.5") == (7, 5, 0)
        assert parse_runtime_version("nothing here") is None


# ── Runtime check ────────────────────────────────────────────────────


class TestCheckRuntime:
    def test_ok(self):
        resolver = DependencyResolver(AutoPrompter(), runner=FakeRunner())
        assert resolver.check_runtime() == (7, 4, 1)

    def test_too_old(self):
        resolver = DependencyResolver(AutoPrompter(), runner=FakeRunner(runtime="PowerShell 6.2.4"))
        with pytest.raises(RuntimeCheckError, match="7.0 or later"):
            resolver.check_runtime()

    def test_missing(self):
        runner = FakeRunner(runtime=ProbeResult(ok=False, error="Executable not found: pwsh"))
        resolver = DependencyResolver(AutoPrompter(), runner=runner)
        with pytest.raises(RuntimeCheckError, match="not installed or not in PATH"):
            resolver.check_runtime()

    def test_timeout(self):
        runner = FakeRunner(runtime=ProbeResult(ok=False, timed_out=True))
        resolver = DependencyResolver(AutoPrompter(), runner=runner)
        with pytest.raises(RuntimeCheckError, match="timed out"):
            resolver.check_runtime()


# ── Probing ──────────────────────────────────────────────────────────


class TestIsModuleInstalled:
    def test_installed(self):
        resolver = DependencyResolver(AutoPrompter(), runner=FakeRunner(installed={EXO}))
        assert resolver.is_module_installed(EXO)

    def test_empty_output(self):
        resolver = DependencyResolver(AutoPrompter(), runner=FakeRunner())
        assert not resolver.is_module_installed(EXO)

    def test_no_match_found(self):
        def runner(cmd, *, timeout, env_overrides=None):
            return ProbeResult(ok=True, stdout="No match found for module")

        assert not DependencyResolver(AutoPrompter(), runner=runner).is_module_installed(EXO)

    def test_timeout_fails_closed(self):
        def runner(cmd, *, timeout, env_overrides=None):
            return ProbeResult(ok=False, timed_out=True)

        assert not DependencyResolver(AutoPrompter(), runner=runner).is_module_installed(EXO)

    def test_exception_fails_closed(self):
        def runner(cmd, *, timeout, env_overrides=None):
            raise OSError("spawn failed")

        assert not DependencyResolver(AutoPrompter(), runner=runner).is_module_installed(EXO)

    def test_name_is_quoted(self):
        runner = FakeRunner()
        DependencyResolver(AutoPrompter(), runner=runner).is_module_installed("O'Brien")
        assert "-Name 'O''Brien'" in runner.calls[0][-1]

    def test_probe_timeout_from_settings(self):
        seen = []

        def runner(cmd, *, timeout, env_overrides=None):
            seen.append(timeout)
            return ProbeResult(ok=True, stdout="")

        settings = ResolverSettings(probe_timeout=5)
        DependencyResolver(AutoPrompter(), settings, runner=runner).is_module_installed(EXO)
        assert seen == [5]


# ── Installing ───────────────────────────────────────────────────────


class TestInstallModule:
    def test_success(self):
        runner = FakeRunner()
        DependencyResolver(AutoPrompter(), runner=runner).install_module(GRAPH)
        script = runner.calls[0][-1]
        assert "-Scope CurrentUser" in script
        assert "-Force -AllowClobber" in script

    def test_error_output_fails(self):
        runner = FakeRunner(install_results={
            GRAPH: ProbeResult(ok=True, returncode=0, stderr="PSGallery unreachable"),
        })
        with pytest.raises(InstallError, match="PSGallery unreachable"):
            DependencyResolver(AutoPrompter(), runner=runner).install_module(GRAPH)

    def test_non_zero_exit_fails(self):
        runner = FakeRunner(install_results={
            GRAPH: ProbeResult(ok=False, returncode=1, error="Command failed (exit 1)"),
        })
        with pytest.raises(InstallError):
            DependencyResolver(AutoPrompter(), runner=runner).install_module(GRAPH)

    def test_timeout(self):
        runner = FakeRunner(install_results={GRAPH: ProbeResult(ok=False, timed_out=True)})
        with pytest.raises(CommandTimeoutError, match="180"):
            DependencyResolver(AutoPrompter(), runner=runner).install_module(GRAPH)


# ── Resolve ──────────────────────────────────────────────────────────


class TestResolve:
    @pytest.mark.asyncio
    async def test_no_capabilities_spawns_nothing(self):
        runner = FakeRunner()
        prompter = AutoPrompter()
        result = await DependencyResolver(prompter, runner=runner).resolve([])
        assert len(result) == 0
        assert runner.calls == []
        assert prompter.confirmations == []

    @pytest.mark.asyncio
    async def test_capabilities_without_modules(self):
        runner = FakeRunner()
        result = await DependencyResolver(AutoPrompter(), runner=runner).resolve([_cap("a")])
        assert result.to_dict() == {}
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_shared_module_probed_once(self):
        runner = FakeRunner(installed={EXO})
        caps = [_cap("a", EXO), _cap("b", EXO), _cap("c", EXO)]
        result = await DependencyResolver(AutoPrompter(), runner=runner).resolve(caps)
        assert runner.probes == [EXO]
        assert result.to_dict() == {EXO: True}

    @pytest.mark.asyncio
    async def test_confirmation_shown_when_all_installed(self):
        prompter = AutoPrompter()
        runner = FakeRunner(installed={EXO, GRAPH})
        await DependencyResolver(prompter, runner=runner).resolve([_cap("a", EXO, GRAPH)])
        assert len(prompter.confirmations) == 1
        assert runner.installs == []

    @pytest.mark.asyncio
    async def test_installs_selected_missing(self):
        prompter = AutoPrompter()
        runner = FakeRunner(installed={EXO})
        result = await DependencyResolver(prompter, runner=runner).resolve([_cap("a", EXO, GRAPH)])
        assert prompter.confirmations[0].missing == [GRAPH]
        assert runner.installs == [GRAPH]
        assert result.to_dict() == {EXO: True, GRAPH: True}

    @pytest.mark.asyncio
    async def test_declined_installs_stay_missing(self):
        runner = FakeRunner()
        result = await DependencyResolver(AutoPrompter(install=False), runner=runner).resolve(
            [_cap("a", EXO)],
        )
        assert runner.installs == []
        assert result.to_dict() == {EXO: False}

    @pytest.mark.asyncio
    async def test_install_failure_reported_and_next_module_continues(self):
        prompter = AutoPrompter()
        runner = FakeRunner(install_results={
            EXO: ProbeResult(ok=False, returncode=1, stderr="Access denied", error="Command failed (exit 1)"),
        })
        result = await DependencyResolver(prompter, runner=runner).resolve([_cap("a", EXO, GRAPH)])
        assert runner.installs == [EXO, GRAPH]
        assert result.to_dict() == {EXO: False, GRAPH: True}
        assert prompter.errors[0][0] == "Installation Error"
        assert "Access denied" in prompter.errors[0][1]

    @pytest.mark.asyncio
    async def test_stop_on_install_error(self):
        runner = FakeRunner(install_results={
            EXO: ProbeResult(ok=False, returncode=1, stderr="Access denied"),
        })
        settings = ResolverSettings(stop_on_install_error=True)
        with pytest.raises(InstallError):
            await DependencyResolver(AutoPrompter(), settings, runner=runner).resolve(
                [_cap("a", EXO, GRAPH)],
            )
        assert runner.installs == [EXO]

    @pytest.mark.asyncio
    async def test_runtime_failure_aborts_before_probing(self):
        runner = FakeRunner(runtime="PowerShell 5.1")
        with pytest.raises(RuntimeCheckError):
            await DependencyResolver(AutoPrompter(), runner=runner).resolve([_cap("a", EXO)])
        assert runner.probes == []
