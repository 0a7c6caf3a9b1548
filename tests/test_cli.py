"""
Tests for CLI commands — global options, status, config check, plan,
apply, refresh and destroy.

The mock opener is injected through ``obj={"opener": ...}``.
"""

import json
import logging

import pytest
from click.testing import CliRunner

from windsc.main import cli


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _invoke(config, *args, opener=None, **kwargs):
    runner = CliRunner()
    return runner.invoke(
        cli, ["--config", str(config), *args], obj={"opener": opener}, **kwargs
    )


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Windows features" in result.output
        for command in ("apply", "refresh", "destroy", "plan", "status", "config"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestStatusCommand:
    def test_status_before_apply(self, basic_config):
        result = _invoke(basic_config, "status")
        assert result.exit_code == 0
        assert "2 (0 bound)" in result.output
        assert "not applied" in result.output

    def test_status_after_apply(self, basic_config, opener, host):
        _invoke(basic_config, "apply", opener=opener)
        result = _invoke(basic_config, "status")
        assert result.exit_code == 0
        assert "(2 bound)" in result.output
        assert "Installed" in result.output
        assert "apply" in result.output

    def test_status_lists_recent_operations(self, basic_config, opener, host):
        _invoke(basic_config, "apply", opener=opener)
        _invoke(basic_config, "refresh", opener=opener)
        result = _invoke(basic_config, "status")
        assert "Recent operations:" in result.output
        assert "refresh" in result.output

    def test_status_json(self, basic_config):
        result = _invoke(basic_config, "status", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [f["address"] for f in data["features"]] == ["web", "Telnet-Client"]

    def test_status_missing_config(self, tmp_path):
        result = _invoke(tmp_path / "missing.yml", "status")
        assert result.exit_code == 1
        assert "not found" in result.output


class TestConfigCheckCommand:
    def test_valid(self, basic_config):
        result = _invoke(basic_config, "config", "check")
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "Features: 2" in result.output

    def test_invalid(self, write_config):
        config = write_config("""\
            connection:
              host: win01
              username: admin
            features:
              - name: "Web Server"
        """)
        result = _invoke(config, "config", "check")
        assert result.exit_code == 1
        assert "Invalid feature name" in result.output

    def test_json(self, basic_config):
        result = _invoke(basic_config, "config", "check", "--json")
        assert result.exit_code == 0
        assert json.loads(result.stdout)["valid"] is True


class TestPlanCommand:
    def test_plan(self, basic_config):
        result = _invoke(basic_config, "plan")
        assert result.exit_code == 0
        assert "create" in result.output
        assert "Web-Server@" in result.output
        assert "digest" in result.output

    def test_show_script(self, basic_config):
        result = _invoke(basic_config, "plan", "--show-script")
        assert result.exit_code == 0
        assert "WindowsFeature" in result.output

    def test_json(self, basic_config):
        result = _invoke(basic_config, "plan", "--json", "--show-script")
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert "script" in data["features"][0]["payload"]

    def test_does_not_connect(self, basic_config, opener):
        _invoke(basic_config, "plan", opener=opener)
        assert opener.open_count == 0


class TestApplyCommand:
    def test_apply(self, basic_config, opener, host):
        result = _invoke(basic_config, "apply", opener=opener)
        assert result.exit_code == 0
        assert "2/2 succeeded" in result.output
        assert host.is_installed("Web-Server")

    def test_apply_selected(self, basic_config, opener, host):
        result = _invoke(basic_config, "apply", "-f", "Telnet-Client", opener=opener)
        assert result.exit_code == 0
        assert host.is_installed("Telnet-Client")
        assert not host.is_installed("Web-Server")

    def test_apply_json(self, basic_config, opener, host):
        result = _invoke(basic_config, "apply", "--json", opener=opener)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "ok"
        assert data["succeeded"] == 2

    def test_failure_exits_non_zero(self, basic_config, opener, host):
        host.fail_applies = True
        result = _invoke(basic_config, "apply", opener=opener)
        assert result.exit_code == 1
        assert "0/2 succeeded" in result.output
        assert "MSFT_RoleResource" in result.output

    def test_unreachable_host(self, basic_config, opener, host):
        host.refuse_connections = True
        result = _invoke(basic_config, "apply", "--json", opener=opener)
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["features"][0]["error"]["type"] == "RemoteConnectionError"

    def test_unknown_feature_address(self, basic_config, opener):
        result = _invoke(basic_config, "apply", "-f", "nope", opener=opener)
        assert result.exit_code == 1
        assert "nope" in result.output


class TestRefreshCommand:
    def test_refresh(self, basic_config, opener, host):
        _invoke(basic_config, "apply", opener=opener)
        host.get("Telnet-Client").installed = False
        result = _invoke(basic_config, "refresh", opener=opener)
        assert result.exit_code == 0
        assert "Drift" in result.output


class TestDestroyCommand:
    def test_destroy_yes(self, basic_config, opener, host):
        _invoke(basic_config, "apply", opener=opener)
        result = _invoke(basic_config, "destroy", "--yes", opener=opener)
        assert result.exit_code == 0
        assert not host.is_installed("Web-Server")

    def test_destroy_declined(self, basic_config, opener, host):
        _invoke(basic_config, "apply", opener=opener)
        result = _invoke(basic_config, "destroy", opener=opener, input="n\n")
        assert result.exit_code == 1
        assert host.is_installed("Web-Server")

    def test_destroy_nothing_bound(self, basic_config, opener):
        result = _invoke(basic_config, "destroy", "-y", opener=opener)
        assert result.exit_code == 0
        assert "Nothing to do" in result.output
