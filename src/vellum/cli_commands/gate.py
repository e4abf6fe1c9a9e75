"""CLI commands for the deployment gate and stakeholder report."""

from __future__ import annotations

import json as json_mod
import sys

import click

from vellum.cli_common import fail, get_db
from vellum.errors import VellumError
from vellum.gate import evaluate_safely
from vellum.reporting import render_report, report_data


@click.command()
@click.option("--strict", is_flag=True, help="Exit 1 while any blocking issue is unresolved")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def validate(strict: bool, as_json: bool) -> None:
    """Run the compliance gate against the ledger.

    Exits 1 only on a ``fail`` verdict: blocking issues in strict mode, or a
    ledger that could not be read (in either mode).
    """
    with get_db() as db:
        result = evaluate_safely(db, strict=strict)

    if as_json:
        click.echo(json_mod.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error is not None:
        click.echo(f"FAIL: could not evaluate the ledger: {result.error}", err=True)
        click.echo("Hint: deployment stays blocked until the ledger can be read.", err=True)
        sys.exit(result.exit_code)

    if result.verdict == "pass":
        click.echo("PASS: no unresolved blocking issues")
    else:
        label = "FAIL" if result.verdict == "fail" else "WARN"
        click.echo(f"{label}: {len(result.blocking)} unresolved blocking issue(s)")
        for issue in result.blocking:
            click.echo(f"  {issue.id} [{issue.severity}] {issue.status:<12} {issue.issue_type} {issue.file_path}")
        if result.verdict == "warn":
            click.echo("Advisory only; run with --strict to fail the build.")
    sys.exit(result.exit_code)


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def report(as_json: bool) -> None:
    """Print the stakeholder compliance summary."""
    with get_db() as db:
        try:
            if as_json:
                click.echo(json_mod.dumps(report_data(db), indent=2))
            else:
                click.echo(render_report(db))
        except VellumError as e:
            fail(e, as_json=as_json)


def register(cli: click.Group) -> None:
    """Register gate commands with the CLI group."""
    cli.add_command(validate)
    cli.add_command(report)
