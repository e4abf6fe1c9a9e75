"""CLI for the vellum compliance ledger.

Convention-based: discovers .vellum/ by walking up from cwd.

Usage:
    vellum init                                   # Initialize .vellum/ in cwd
    vellum add --file f.html --type t --severity high -d "..."  # Record an issue
    vellum show <id>                              # Show issue details
    vellum list --blocking-only                   # List issues
    vellum start <id>                             # pending -> in-progress
    vellum resolve <id> --commit abc123           # Resolve with fixing commit
    vellum defer <id> --reason "..."              # Defer with justification
    vellum note <id> "text"                       # Append a note
    vellum scan content/                          # Detect and record findings
    vellum rules                                  # Show active rule table
    vellum validate --strict                      # Deployment gate
    vellum report                                 # Stakeholder summary
    vellum dashboard                              # Read-only HTTP API
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from vellum import __version__
from vellum.cli_commands import gate as gate_commands
from vellum.cli_commands import issues as issue_commands
from vellum.cli_commands import scan as scan_commands
from vellum.core import (
    DEFAULT_PREFIX,
    LEDGER_FILENAME,
    REPORT_FILENAME,
    VELLUM_DIR_NAME,
    VellumDB,
    write_config,
)
from vellum.reporting import write_report
from vellum.store import DEFAULT_LOCK_TIMEOUT
from vellum.validation import sanitize_actor


@click.group()
@click.version_option(version=__version__, prog_name="vellum")
@click.option("--actor", default="cli", help="Actor identity for audit trail (default: cli)")
@click.pass_context
def cli(ctx: click.Context, actor: str) -> None:
    """Vellum: content-compliance ledger and deployment gate."""
    ctx.ensure_object(dict)
    cleaned, err = sanitize_actor(actor)
    if err:
        raise click.BadParameter(err, param_hint="--actor")
    ctx.obj["actor"] = cleaned


@cli.command()
@click.option("--prefix", default=DEFAULT_PREFIX, help=f"ID prefix for issues (default: {DEFAULT_PREFIX})")
def init(prefix: str) -> None:
    """Initialize .vellum/ in the current directory."""
    cwd = Path.cwd()
    vellum_dir = cwd / VELLUM_DIR_NAME

    if vellum_dir.exists():
        click.echo(f"{VELLUM_DIR_NAME}/ already exists in {cwd}")
        # Still ensure the ledger exists
        VellumDB.from_vellum_dir(vellum_dir)
        return

    prefix = prefix.strip()
    if not prefix or not prefix.replace("_", "").replace("-", "").isalnum():
        click.echo(f"Invalid prefix: {prefix!r} (letters, digits, '-' and '_' only)", err=True)
        sys.exit(1)
    vellum_dir.mkdir()

    write_config(vellum_dir, {"prefix": prefix, "version": 1, "lock_timeout": DEFAULT_LOCK_TIMEOUT})

    db = VellumDB.from_vellum_dir(vellum_dir)
    write_report(db, vellum_dir / REPORT_FILENAME)

    click.echo(f"Initialized {VELLUM_DIR_NAME}/ in {cwd}")
    click.echo(f"  Prefix: {prefix}")
    click.echo(f"  Ledger: {vellum_dir / LEDGER_FILENAME}")
    click.echo("\nNext: vellum scan <content dir>")


@cli.command()
@click.option("--port", default=8377, type=int, help="Port to listen on (default 8377)")
def dashboard(port: int) -> None:
    """Serve the read-only HTTP API (requires vellum[dashboard])."""
    try:
        from vellum.dashboard import main as dashboard_main
    except ImportError:
        click.echo('Dashboard requires extra dependencies. Install with: pip install "vellum[dashboard]"', err=True)
        sys.exit(1)
    dashboard_main(port=port)


issue_commands.register(cli)
gate_commands.register(cli)
scan_commands.register(cli)


if __name__ == "__main__":
    cli()
