"""CLI commands for rule-driven detection: scan, rules."""

from __future__ import annotations

import json as json_mod
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import click

from vellum.cli_common import fail, get_db, refresh_report
from vellum.core import VellumDB, rules_path_for
from vellum.detection import CandidateIssue, DetectionEngine, load_rules
from vellum.errors import ValidationError, VellumError

SCANNABLE_SUFFIXES = (".html", ".htm", ".md", ".markdown", ".txt")


def _iter_content_files(paths: tuple[str, ...]) -> Iterator[Path]:
    """Yield explicit files as given; walk directories for content files."""
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            for found in sorted(path.rglob("*")):
                if found.is_file() and found.suffix.lower() in SCANNABLE_SUFFIXES:
                    yield found
        else:
            yield path


def _logical_path(path: Path, project_root: Path) -> str:
    """Path relative to the project root when inside it, else as given."""
    try:
        return path.resolve().relative_to(project_root).as_posix()
    except ValueError:
        return path.as_posix()


def _engine_for(db: VellumDB, rules: str | None) -> DetectionEngine:
    rules_path = Path(rules) if rules else rules_path_for(db.vellum_dir)
    return DetectionEngine(load_rules(rules_path))


@click.command()
@click.argument("paths", nargs=-1)
@click.option("--stdin", "from_stdin", is_flag=True, help="Read content from standard input")
@click.option("--path", "logical_path", default=None, help="Logical file path for --stdin content")
@click.option("--rules", default=None, help="Rule table to use instead of the project's")
@click.option("--dry-run", is_flag=True, help="Report candidates without recording issues")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def scan(
    ctx: click.Context,
    paths: tuple[str, ...],
    from_stdin: bool,
    logical_path: str | None,
    rules: str | None,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Detect sensitive content and record findings as pending issues.

    A finding is skipped when an unresolved issue with the same file and
    issue type already exists. Each rule has its own issue type, so every
    firing rule is tracked separately.
    """
    with get_db() as db:
        try:
            if from_stdin == bool(paths):
                msg = "Give content paths or --stdin, not both"
                raise ValidationError(msg, hint="Use 'vellum scan page.html' or 'vellum scan --stdin --path page.html'.")
            if from_stdin and not logical_path:
                msg = "--stdin requires --path"
                raise ValidationError(msg, hint="Name the file the content belongs to.")
            engine = _engine_for(db, rules)
        except VellumError as e:
            fail(e, as_json=as_json)

        project_root = db.vellum_dir.parent.resolve()
        candidates: list[CandidateIssue] = []
        read_errors: list[dict[str, str]] = []
        scanned = 0
        if from_stdin:
            candidates.extend(engine.scan(sys.stdin.read(), logical_path or ""))
            scanned = 1
        else:
            for path in _iter_content_files(paths):
                try:
                    content = path.read_text(encoding="utf-8", errors="replace")
                except OSError as exc:
                    read_errors.append({"path": str(path), "error": str(exc)})
                    continue
                scanned += 1
                candidates.extend(engine.scan(content, _logical_path(path, project_root)))

        created: list[Any] = []
        skipped: list[CandidateIssue] = []
        if not dry_run and candidates:
            try:
                created, skipped = db.submit_candidates(candidates, actor=ctx.obj["actor"])
            except VellumError as e:
                fail(e, as_json=as_json)
            refresh_report(db)

        if as_json:
            payload: dict[str, Any] = {
                "scanned": scanned,
                "candidates": [c.to_dict() for c in candidates],
                "created": [i.to_dict() for i in created],
                "skipped": [c.to_dict() for c in skipped],
                "errors": read_errors,
                "dry_run": dry_run,
            }
            click.echo(json_mod.dumps(payload, indent=2))
        else:
            for err in read_errors:
                click.echo(f"Cannot read {err['path']}: {err['error']}", err=True)
            if dry_run:
                for cand in candidates:
                    click.echo(f"  would add [{cand.severity}] {cand.issue_type} in {cand.file_path} ({cand.rule_name})")
            for issue in created:
                click.echo(f"Created {issue.id}: [{issue.severity}] {issue.issue_type} in {issue.file_path}")
            for cand in skipped:
                click.echo(f"  skipped {cand.issue_type} in {cand.file_path} (already open)")
            click.echo(f"Scanned {scanned} file(s): {len(candidates)} finding(s), {len(created)} new issue(s)")
        if read_errors:
            sys.exit(1)


@click.command("rules")
@click.option("--rules", "rules_file", default=None, help="Rule table to show instead of the project's")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def rules_cmd(rules_file: str | None, as_json: bool) -> None:
    """List the active detection rules."""
    with get_db() as db:
        try:
            engine = _engine_for(db, rules_file)
        except VellumError as e:
            fail(e, as_json=as_json)

    ruleset = engine.ruleset
    if as_json:
        click.echo(
            json_mod.dumps(
                {"version": ruleset.version, "source": ruleset.source, "rules": [r.to_dict() for r in engine.rules]},
                indent=2,
            )
        )
        return
    click.echo(f"Rule table {ruleset.source} (version {ruleset.version})")
    for rule in engine.rules:
        blocks = " blocks" if rule.blocks_deployment else ""
        click.echo(f"  {rule.name:<24} {rule.kind:<18} {rule.severity:<7} {rule.issue_type}{blocks}")
    click.echo(f"\n{len(engine.rules)} rules")


def register(cli: click.Group) -> None:
    """Register detection commands with the CLI group."""
    cli.add_command(scan)
    cli.add_command(rules_cmd)
