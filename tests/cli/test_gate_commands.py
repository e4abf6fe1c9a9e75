"""CLI gate and report commands: validate, report."""

from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from tests.cli._helpers import add_issue
from vellum.cli import cli


class TestValidate:
    def test_empty_ledger_passes(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["validate", "--strict"])
        assert result.exit_code == 0
        assert "PASS" in result.output

    def test_blocking_issue_fails_strict(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        add_issue(runner)
        result = runner.invoke(cli, ["validate", "--strict"])
        assert result.exit_code == 1
        assert "FAIL: 1 unresolved blocking issue(s)" in result.output
        assert "SC-001" in result.output

    def test_blocking_issue_warns_without_strict(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        add_issue(runner)
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 0
        assert "WARN" in result.output
        assert "--strict" in result.output

    def test_resolving_clears_gate(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        add_issue(runner)
        runner.invoke(cli, ["resolve", "SC-001", "--commit", "abc123", "--by", "editor"])
        result = runner.invoke(cli, ["validate", "--strict"])
        assert result.exit_code == 0

    def test_deferred_still_fails(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        add_issue(runner)
        runner.invoke(cli, ["defer", "SC-001", "--reason", "Awaiting department"])
        result = runner.invoke(cli, ["validate", "--strict"])
        assert result.exit_code == 1
        assert "deferred" in result.output

    def test_non_blocking_issue_passes(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        add_issue(runner, severity="low", blocking=False)
        result = runner.invoke(cli, ["validate", "--strict"])
        assert result.exit_code == 0

    def test_json_output(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        add_issue(runner)
        result = runner.invoke(cli, ["validate", "--strict", "--json"])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["verdict"] == "fail"
        assert data["blocking_count"] == 1
        assert data["blocking"][0]["id"] == "SC-001"

    def test_corrupt_ledger_fails_closed(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, root = cli_in_project
        add_issue(runner, blocking=False)
        ledger = root / ".vellum" / "issues.jsonl"
        ledger.write_text("{not json}\n" + ledger.read_text())
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 1
        assert "could not evaluate" in result.output

    def test_corrupt_ledger_fails_closed_json(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, root = cli_in_project
        (root / ".vellum" / "issues.jsonl").write_text("[1, 2]\n")
        result = runner.invoke(cli, ["validate", "--json"])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["verdict"] == "fail"
        assert data["error"]


class TestReport:
    def test_markdown(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        add_issue(runner)
        result = runner.invoke(cli, ["report"])
        assert result.exit_code == 0
        assert "# Compliance Report" in result.output
        assert "BLOCKED: 1 unresolved blocking issue(s)" in result.output

    def test_json(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        add_issue(runner)
        add_issue(runner, severity="low", blocking=False)
        data = json.loads(runner.invoke(cli, ["report", "--json"]).output)
        assert data["total"] == 2
        assert data["by_status"]["pending"] == 2
        assert data["open_blocking"] == ["SC-001"]
        assert data["gate"] == {"strict": "fail", "advisory": "warn"}
