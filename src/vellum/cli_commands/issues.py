"""CLI commands for the issue ledger: add, show, list, start, resolve, defer, note."""

from __future__ import annotations

import json as json_mod

import click

from vellum.cli_common import fail, get_db, refresh_report
from vellum.errors import VellumError
from vellum.models import VALID_SEVERITIES, VALID_STATUSES, Issue
from vellum.reporting import filter_issues
from vellum.validation import parse_csv


def _echo_issue(issue: Issue) -> None:
    blocking = "yes" if issue.blocks_deployment else "no"
    click.echo(f"ID:        {issue.id}")
    click.echo(f"Status:    {issue.status}")
    click.echo(f"Severity:  {issue.severity}")
    click.echo(f"Type:      {issue.issue_type}")
    click.echo(f"File:      {issue.file_path}")
    click.echo(f"Blocks:    {blocking}")
    click.echo(f"Created:   {issue.created_at}")
    if issue.content_warnings:
        click.echo(f"Warnings:  {', '.join(issue.content_warnings)}")
    if issue.status == "resolved":
        click.echo(f"Resolved:  {issue.resolved_at} by {issue.resolved_by} in {issue.assigned_commit}")
    click.echo(f"\n--- Description ---\n{issue.description}")
    if issue.required_actions:
        click.echo("\n--- Required actions ---")
        for action in issue.required_actions:
            click.echo(f"  - {action}")
    if issue.notes:
        click.echo("\n--- Notes ---")
        for note in issue.notes:
            author = note.author or "?"
            click.echo(f"  [{note.created_at}] {author}: {note.text}")


@click.command()
@click.option("--file", "file_path", required=True, help="Path of the affected content file")
@click.option("--type", "issue_type", required=True, help="Issue type (e.g. missing-immigration-disclaimer)")
@click.option("--severity", required=True, help=f"Severity ({', '.join(VALID_SEVERITIES)})")
@click.option("--description", "-d", required=True, help="What is wrong")
@click.option("--warnings", default="", help="Content warning tags, comma-separated")
@click.option("--action", "-a", multiple=True, help="Required remediation step (repeatable)")
@click.option("--blocks-deployment", is_flag=True, help="Block deployment until resolved")
@click.option("--id", "issue_id", default=None, help="Explicit issue id (default: next <prefix>-NNN)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def add(
    ctx: click.Context,
    file_path: str,
    issue_type: str,
    severity: str,
    description: str,
    warnings: str,
    action: tuple[str, ...],
    blocks_deployment: bool,
    issue_id: str | None,
    as_json: bool,
) -> None:
    """Record a new pending compliance issue."""
    with get_db() as db:
        try:
            issue = db.create_issue(
                file_path,
                issue_type,
                severity,
                description,
                required_actions=list(action),
                content_warnings=parse_csv(warnings),
                blocks_deployment=blocks_deployment,
                issue_id=issue_id,
                actor=ctx.obj["actor"],
            )
        except VellumError as e:
            fail(e, as_json=as_json)
        if as_json:
            click.echo(json_mod.dumps(issue.to_dict(), indent=2))
        else:
            marker = " (blocks deployment)" if issue.blocks_deployment else ""
            click.echo(f"Created {issue.id}: [{issue.severity}] {issue.issue_type} in {issue.file_path}{marker}")
        refresh_report(db)


@click.command()
@click.argument("issue_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show(issue_id: str, as_json: bool) -> None:
    """Show issue details."""
    with get_db() as db:
        try:
            issue = db.get_issue(issue_id)
        except VellumError as e:
            fail(e, as_json=as_json)

        if as_json:
            click.echo(json_mod.dumps(issue.to_dict(), indent=2))
            return
        _echo_issue(issue)


@click.command("list")
@click.option("--status", default=None, type=click.Choice(VALID_STATUSES), help="Filter by status")
@click.option("--severity", default=None, type=click.Choice(VALID_SEVERITIES), help="Filter by severity")
@click.option("--blocking-only", is_flag=True, help="Only issues currently blocking deployment")
@click.option("--file", "file_path", default=None, help="Filter by content file path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_issues(
    status: str | None,
    severity: str | None,
    blocking_only: bool,
    file_path: str | None,
    as_json: bool,
) -> None:
    """List issues with optional filters."""
    with get_db() as db:
        try:
            issues = filter_issues(db, status=status, severity=severity, blocking=blocking_only, file_path=file_path)
        except VellumError as e:
            fail(e, as_json=as_json)

        if as_json:
            click.echo(json_mod.dumps([i.to_dict() for i in issues], indent=2))
            return

        for issue in issues:
            block_marker = " !" if issue.is_blocking else ""
            click.echo(
                f"{issue.id} {issue.severity:<7} {issue.status:<12} {issue.issue_type} {issue.file_path}{block_marker}"
            )
        click.echo(f"\n{len(issues)} issues")


@click.command()
@click.argument("issue_id")
@click.option("--note", default=None, help="Optional note to attach")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def start(ctx: click.Context, issue_id: str, note: str | None, as_json: bool) -> None:
    """Mark an issue as in-progress."""
    with get_db() as db:
        try:
            issue = db.start_issue(issue_id, actor=ctx.obj["actor"], note=note)
        except VellumError as e:
            fail(e, as_json=as_json)
        if as_json:
            click.echo(json_mod.dumps(issue.to_dict(), indent=2))
        else:
            click.echo(f"Started {issue.id} [{issue.status}]")
        refresh_report(db)


@click.command()
@click.argument("issue_id")
@click.option("--commit", "commit", default=None, help="Commit that fixed the content (required)")
@click.option("--by", "resolved_by", default=None, help="Who resolved it (default: --actor)")
@click.option("--note", default=None, help="Resolution note")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def resolve(
    ctx: click.Context,
    issue_id: str,
    commit: str | None,
    resolved_by: str | None,
    note: str | None,
    as_json: bool,
) -> None:
    """Resolve an issue, recording the fixing commit."""
    actor = ctx.obj["actor"]
    with get_db() as db:
        try:
            issue = db.resolve_issue(
                issue_id,
                assigned_commit=commit,
                resolved_by=resolved_by or actor,
                note=note,
                actor=actor,
            )
        except VellumError as e:
            fail(e, as_json=as_json)
        if as_json:
            click.echo(json_mod.dumps(issue.to_dict(), indent=2))
        else:
            click.echo(f"Resolved {issue.id} in {issue.assigned_commit} by {issue.resolved_by}")
        refresh_report(db)


@click.command()
@click.argument("issue_id")
@click.option("--reason", required=True, help="Why the issue is deferred (recorded as a note)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def defer(ctx: click.Context, issue_id: str, reason: str, as_json: bool) -> None:
    """Defer an issue. A blocking issue still blocks deployment."""
    with get_db() as db:
        try:
            issue = db.defer_issue(issue_id, justification=reason, actor=ctx.obj["actor"])
        except VellumError as e:
            fail(e, as_json=as_json)
        if as_json:
            click.echo(json_mod.dumps(issue.to_dict(), indent=2))
        else:
            click.echo(f"Deferred {issue.id}")
            if issue.is_blocking:
                click.echo("Note: this issue still blocks deployment until resolved.")
        refresh_report(db)


@click.command()
@click.argument("issue_id")
@click.argument("text")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def note(ctx: click.Context, issue_id: str, text: str, as_json: bool) -> None:
    """Append a note to an issue (allowed in any status)."""
    with get_db() as db:
        try:
            issue = db.add_note(issue_id, text, author=ctx.obj["actor"])
        except VellumError as e:
            fail(e, as_json=as_json)
        if as_json:
            click.echo(json_mod.dumps(issue.notes[-1].to_dict(), indent=2))
        else:
            click.echo(f"Added note to {issue.id}")
        refresh_report(db)


def register(cli: click.Group) -> None:
    """Register issue commands with the CLI group."""
    cli.add_command(add)
    cli.add_command(show)
    cli.add_command(list_issues)
    cli.add_command(start)
    cli.add_command(resolve)
    cli.add_command(defer)
    cli.add_command(note)
