"""
Tests for CLI commands — capabilities, exec, deps check, and global options.
"""

import json
import logging
import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from cloudadmin.adapters.mock import FakeSession
from cloudadmin.adapters.shell.runner import ProbeResult
from cloudadmin.main import cli, parse_param


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    config = tmp_path / "cloudadmin.yml"
    config.write_text(textwrap.dedent("""\
        engine:
          retry_base_delay: 0
        auth:
          user_principal_name: admin@contoso.com
    """))
    return config


def _runner(installed: set[str], runtime: str = "PowerShell 7.4.1"):
    def run(cmd, *, timeout, env_overrides=None):
        if cmd[-1] == "--version":
            return ProbeResult(ok=True, returncode=0, stdout=runtime)
        module = cmd[-1].split("'")[1]
        if cmd[-1].startswith("Get-Module"):
            return ProbeResult(ok=True, returncode=0, stdout=module if module in installed else "")
        installed.add(module)
        return ProbeResult(ok=True, returncode=0, stdout="Installation completed successfully.")

    return run


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Exchange Online" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_bad_config(self, tmp_path: Path):
        config = tmp_path / "cloudadmin.yml"
        config.write_text("engine: [\n")
        result = CliRunner().invoke(cli, ["--config", str(config), "exec", "Get-Mailbox"])
        assert result.exit_code == 1
        assert "Invalid YAML" in result.output


class TestCapabilitiesCommand:
    def test_lists_all(self):
        result = CliRunner().invoke(cli, ["capabilities"])
        assert result.exit_code == 0
        assert "room-permissions" in result.output
        assert "Intune Devices" in result.output

    def test_category_filter(self):
        result = CliRunner().invoke(cli, ["capabilities", "--category", "intune"])
        assert result.exit_code == 0
        assert "intune-devices" in result.output
        assert "room-permissions" not in result.output

    def test_json(self):
        result = CliRunner().invoke(cli, ["capabilities", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert len(data) == 9
        assert data[0]["required_modules"] == ["ExchangeOnlineManagement"]

    def test_unknown_category(self):
        result = CliRunner().invoke(cli, ["capabilities", "--category", "nope"])
        assert result.exit_code == 0
        assert "No capabilities" in result.output


class TestExecCommand:
    def test_runs_through_engine(self, config_file: Path):
        session = FakeSession().succeed("Get-Mailbox", [{"Name": "Room 1", "Alias": "room1"}])
        with patch("cloudadmin.main.pwsh_session_factory", lambda options: session):
            result = CliRunner().invoke(
                cli, ["--config", str(config_file), "exec", "Get-Mailbox", "-p", "Identity=room1@contoso.com"],
            )
        assert result.exit_code == 0, result.output
        assert "Name: Room 1" in result.output
        connect = session.calls_to("Connect-ExchangeOnline")[0]
        assert connect.params["UserPrincipalName"] == "admin@contoso.com"
        assert session.calls_to("Get-Mailbox")[0].params == {"Identity": "room1@contoso.com"}
        assert session.closed

    def test_raw_skips_connect(self, config_file: Path):
        session = FakeSession()
        with patch("cloudadmin.main.pwsh_session_factory", lambda options: session):
            result = CliRunner().invoke(cli, ["--config", str(config_file), "exec", "Get-MgUser", "--raw"])
        assert result.exit_code == 0
        assert "no output" in result.output
        assert session.calls_to("Connect-ExchangeOnline") == []

    def test_json_output(self, config_file: Path):
        session = FakeSession().succeed("Get-Mailbox", [{"Name": "Room 1"}])
        with patch("cloudadmin.main.pwsh_session_factory", lambda options: session):
            result = CliRunner().invoke(cli, ["--config", str(config_file), "exec", "Get-Mailbox", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["records"] == [{"Name": "Room 1"}]

    def test_graph_connects_with_configured_token(self, tmp_path: Path):
        config = tmp_path / "cloudadmin.yml"
        config.write_text(textwrap.dedent("""\
            auth:
              tokens:
                "https://graph.microsoft.com/.default": graph-token
        """))
        session = FakeSession().succeed("Get-MgUser", [{"DisplayName": "Ada"}])
        with patch("cloudadmin.main.pwsh_session_factory", lambda options: session):
            result = CliRunner().invoke(cli, ["--config", str(config), "exec", "Get-MgUser", "-p", "All", "--graph"])
        assert result.exit_code == 0, result.output
        assert "DisplayName: Ada" in result.output
        assert session.calls_to("Connect-MgGraph")[0].params == {"AccessToken": "graph-token"}
        assert session.calls_to("Get-MgUser")[0].params == {"All": None}
        assert session.calls_to("Connect-ExchangeOnline") == []

    def test_graph_without_token_exits_1(self, config_file: Path):
        session = FakeSession()
        with patch("cloudadmin.main.pwsh_session_factory", lambda options: session):
            result = CliRunner().invoke(cli, ["--config", str(config_file), "exec", "Get-MgUser", "--graph"])
        assert result.exit_code == 1
        assert "No access token configured" in result.output
        assert session.calls_to("Get-MgUser") == []

    def test_graph_and_raw_conflict(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "exec", "Get-MgUser", "--graph", "--raw"])
        assert result.exit_code == 2
        assert "mutually exclusive" in result.output

    def test_failure_exits_1(self, config_file: Path):
        session = FakeSession().fail("Get-Mailbox", "Access is denied.")
        with patch("cloudadmin.main.pwsh_session_factory", lambda options: session):
            result = CliRunner().invoke(cli, ["--config", str(config_file), "exec", "Get-Mailbox"])
        assert result.exit_code == 1
        assert "Access is denied." in result.output


class TestParseParam:
    def test_string(self):
        assert parse_param("Identity=room1@contoso.com") == ("Identity", "room1@contoso.com")

    def test_typed_values(self):
        assert parse_param("ResultSize=100") == ("ResultSize", 100)
        assert parse_param("Enabled=true") == ("Enabled", True)

    def test_switch(self):
        assert parse_param("-All") == ("All", None)

    def test_structured_value_kept_as_text(self):
        assert parse_param("Filter=[a, b]") == ("Filter", "[a, b]")


class TestDepsCheck:
    def test_all_installed(self):
        run = _runner({"ExchangeOnlineManagement", "Microsoft.Graph"})
        with patch("cloudadmin.ui.cli.deps.run_bounded", run):
            result = CliRunner().invoke(cli, ["deps", "check"])
        assert result.exit_code == 0, result.output
        assert "ExchangeOnlineManagement" in result.output
        assert "Microsoft.Graph" in result.output

    def test_yes_installs_missing(self):
        installed = {"ExchangeOnlineManagement"}
        with patch("cloudadmin.ui.cli.deps.run_bounded", _runner(installed)):
            result = CliRunner().invoke(cli, ["deps", "check", "--yes", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output[result.output.index("{"):])
        assert data == {"ExchangeOnlineManagement": True, "Microsoft.Graph": True}
        assert "Microsoft.Graph" in installed

    def test_no_install_reports_missing(self):
        with patch("cloudadmin.ui.cli.deps.run_bounded", _runner(set())):
            result = CliRunner().invoke(cli, ["deps", "check", "--no-install"])
        assert result.exit_code == 1
        assert "2 module(s) missing" in result.output

    def test_interactive_decline(self):
        with patch("cloudadmin.ui.cli.deps.run_bounded", _runner({"ExchangeOnlineManagement"})):
            result = CliRunner().invoke(cli, ["deps", "check"], input="n\n")
        assert result.exit_code == 1
        assert "Install Microsoft.Graph?" in result.output

    def test_old_runtime(self):
        with patch("cloudadmin.ui.cli.deps.run_bounded", _runner(set(), runtime="PowerShell 5.1")):
            result = CliRunner().invoke(cli, ["deps", "check"])
        assert result.exit_code == 1
        assert "7.0 or later" in result.output
