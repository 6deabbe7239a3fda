"""Tests for gateroute CLI."""

from __future__ import annotations

import json
import os
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner
from conftest import gateway_manifest, listener, route_manifest, service_manifest

from gateroute.cli import main


def _exact_rule(path):
    return {"matches": [{"path": {"type": "Exact", "value": path}}], "backendRefs": [{"name": "svc", "port": 80}]}


@pytest.fixture
def manifests(tmp_path):
    """A cluster with one Gateway, two routes and their service."""
    path = tmp_path / "cluster.yaml"
    path.write_text(
        yaml.safe_dump_all(
            [
                gateway_manifest([listener("http", 80)]),
                service_manifest(),
                route_manifest(name="wild", hostnames=["*.example.com"], rules=[_exact_rule("/v1/x")]),
                route_manifest(name="api", hostnames=["api.example.com"], rules=[_exact_rule("/v1")]),
            ]
        )
    )
    return str(path)


@pytest.fixture
def conflicting(tmp_path):
    """A Gateway whose listeners conflict on port 80."""
    path = tmp_path / "conflict.yaml"
    path.write_text(
        yaml.safe_dump(gateway_manifest([listener("http", 80, "HTTP"), listener("https", 80, "HTTPS")]))
    )
    return str(path)


class TestCLIBasics:
    """Basic CLI tests."""

    def test_main_with_help(self):
        """Test --help shows help message."""
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "Gateway API route attachment" in result.output
        assert "compile" in result.output

    def test_version_command(self):
        """Test version command."""
        runner = CliRunner()
        result = runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert "Version:" in result.output
        assert "Python:" in result.output


class TestCompileCommand:
    """Tests for compile command."""

    def test_compile_json(self, manifests):
        """Test compile --json prints the ordered rule table."""
        runner = CliRunner()
        result = runner.invoke(main, ["--log-level", "error", "compile", manifests, "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["gateway"] == "default/gw"
        assert data["controller_class"] == "alb"
        assert [e["route"] for e in data["rules_by_port"]["80"]] == [
            "HTTPRoute/default/api",
            "HTTPRoute/default/wild",
        ]

    def test_compile_table(self, manifests):
        """Test compile prints listener and rule tables."""
        runner = CliRunner()
        result = runner.invoke(main, ["--log-level", "error", "compile", manifests, "--gateway", "default/gw"])

        assert result.exit_code == 0
        assert "Listeners" in result.output
        assert "Rules for port 80" in result.output

    def test_compile_unknown_gateway(self, manifests):
        """Test a missing Gateway exits with an error."""
        runner = CliRunner()
        result = runner.invoke(main, ["compile", manifests, "--gateway", "default/nope"])

        assert result.exit_code == 1
        assert "Gateway not found" in result.output

    def test_compile_invalid_manifest(self, tmp_path):
        """Test an unparsable manifest exits with an error."""
        path = tmp_path / "bad.yaml"
        path.write_text("kind: Service\nmetadata: {}\n")
        runner = CliRunner()
        result = runner.invoke(main, ["compile", str(path)])

        assert result.exit_code == 1
        assert "Failed to load manifests" in result.output

    def test_compile_strict(self, conflicting):
        """Test --strict exits with 1 when anything was rejected."""
        runner = CliRunner()
        result = runner.invoke(main, ["--log-level", "error", "compile", conflicting, "--strict"])

        assert result.exit_code == 1

    def test_compile_strict_invalid_redirect(self, tmp_path):
        """Test --strict fails on rule validation errors and the table lists them."""
        redirect = {"type": "RequestRedirect", "requestRedirect": {"scheme": "ftp"}}
        path = tmp_path / "redirect.yaml"
        path.write_text(
            yaml.safe_dump_all(
                [gateway_manifest([listener("http", 80)]), route_manifest(rules=[{"filters": [redirect]}])]
            )
        )
        runner = CliRunner()
        result = runner.invoke(main, ["--log-level", "error", "compile", str(path), "--strict"])

        assert result.exit_code == 1
        assert "Route Problems" in result.output

    def test_compile_previous(self, manifests, tmp_path):
        """Test --previous plans cleanup for routes that changed."""
        path = tmp_path / "before.yaml"
        path.write_text(
            yaml.safe_dump_all(
                [
                    gateway_manifest([listener("http", 80)]),
                    service_manifest(),
                    route_manifest(name="api", hostnames=["api.example.com"], rules=[_exact_rule("/v1")]),
                    route_manifest(name="old", rules=[_exact_rule("/old")]),
                ]
            )
        )
        runner = CliRunner()
        result = runner.invoke(
            main, ["--log-level", "error", "compile", manifests, "--previous", str(path), "--json"]
        )

        assert result.exit_code == 0
        cleanup = json.loads(result.output)["cleanup"]
        assert [plan["route"] for plan in cleanup] == ["HTTPRoute/default/old", "HTTPRoute/default/wild"]
        assert cleanup[0]["target_groups_to_release"] == ["default/svc:80"]
        assert cleanup[1]["transitions"][0]["old"] is None


class TestListenersCommand:
    """Tests for listeners command."""

    def test_listeners_json(self, conflicting):
        """Test listener validation output and exit status."""
        runner = CliRunner()
        result = runner.invoke(main, ["--log-level", "error", "listeners", conflicting, "--json"])

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["has_errors"] is True
        assert [item["reason"] for item in data["listeners"]] == ["Accepted", "ProtocolConflict"]

    def test_listeners_valid(self, manifests):
        """Test valid listeners exit with 0."""
        runner = CliRunner()
        result = runner.invoke(main, ["--log-level", "error", "listeners", manifests])

        assert result.exit_code == 0
        assert "Accepted" in result.output


class TestReportCommand:
    """Tests for report command."""

    def test_report(self, manifests):
        """Test the resource report lists each route."""
        runner = CliRunner()
        result = runner.invoke(main, ["--log-level", "error", "report", manifests])

        assert result.exit_code == 0
        assert "Resource Usage Report for Route HTTPRoute/default/api" in result.output
        assert "Total target groups:" in result.output


class TestRewriteCommand:
    """Tests for rewrite command."""

    def test_prefix_rewrite(self):
        """Test previewing a prefix rewrite."""
        runner = CliRunner()
        result = runner.invoke(main, ["rewrite", "/foo/bar", "--prefix", "/foo", "--replace", "/cat"])

        assert result.exit_code == 0
        assert "/cat/bar" in result.output

    def test_full_path_rewrite(self):
        """Test previewing a full path rewrite keeps the query string."""
        runner = CliRunner()
        result = runner.invoke(main, ["rewrite", "/foo?q=1", "--full", "/index.html"])

        assert result.exit_code == 0
        assert "/index.html?q=1" in result.output

    def test_rewrite_requires_options(self):
        """Test rewrite without options exits with an error."""
        runner = CliRunner()
        result = runner.invoke(main, ["rewrite", "/foo"])

        assert result.exit_code == 1


class TestConfigCommands:
    """Tests for config subcommands."""

    def test_config_show_json(self):
        """Test config show --json."""
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["compiler"]["controller_class"] == "alb"

    def test_config_show_section(self):
        """Test config show --section limits output."""
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--json", "--section", "logging"])

        assert result.exit_code == 0
        assert list(json.loads(result.output)) == ["logging"]

    def test_config_show_unknown_section(self):
        """Test an unknown section exits with an error."""
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--section", "nope"])

        assert result.exit_code == 1
        assert "Unknown section" in result.output

    def test_config_export(self):
        """Test config export in bash format."""
        runner = CliRunner()
        result = runner.invoke(main, ["config", "export"])

        assert result.exit_code == 0
        assert 'export GATEROUTE_CONTROLLER_CLASS="alb"' in result.output

    def test_config_export_powershell(self):
        """Test config export in powershell format."""
        runner = CliRunner()
        result = runner.invoke(main, ["config", "export", "--shell", "powershell"])

        assert '$env:GATEROUTE_MAX_TARGET_GROUPS="100"' in result.output

    def test_config_validate(self):
        """Test config validate with defaults."""
        runner = CliRunner()
        result = runner.invoke(main, ["config", "validate"])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_config_validate_warnings(self):
        """Test config validate warns about a high target group limit."""
        runner = CliRunner()
        with patch.dict(os.environ, {"GATEROUTE_MAX_TARGET_GROUPS": "200"}):
            result = runner.invoke(main, ["config", "validate"])

        assert result.exit_code == 0
        assert "Configuration Warnings" in result.output

    def test_config_file(self, tmp_path):
        """Test --config applies file settings."""
        path = tmp_path / "gateroute.yaml"
        path.write_text("compiler:\n  controller_class: nlb\n")
        runner = CliRunner()
        with patch.dict(os.environ, {}):
            result = runner.invoke(main, ["--config", str(path), "config", "show", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["compiler"]["controller_class"] == "nlb"
