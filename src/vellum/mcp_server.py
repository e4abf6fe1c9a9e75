"""MCP server for the vellum compliance ledger.

Agent-facing interface. Reads and writes the same JSONL ledger as the CLI,
under the same file lock, with no daemon in between.

Usage:
    vellum-mcp                              # Auto-discover .vellum/ from cwd
    vellum-mcp --project /path/to/project   # Explicit project root
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool

from vellum.core import REPORT_FILENAME, VELLUM_DIR_NAME, VellumDB, find_vellum_root, rules_path_for
from vellum.detection import DetectionEngine, load_rules
from vellum.errors import InvalidTransitionError, ValidationError, VellumError
from vellum.gate import evaluate_safely
from vellum.models import VALID_SEVERITIES, VALID_STATUSES
from vellum.reporting import filter_issues, render_report, report_data, write_report
from vellum.validation import sanitize_actor

server = Server("vellum")
db: VellumDB | None = None
_vellum_dir: Path | None = None
_logger: logging.Logger | None = None

_DEFAULT_ACTOR = "mcp"


def _get_db() -> VellumDB:
    if db is None:
        msg = "Ledger not initialized"
        raise RuntimeError(msg)
    return db


def _refresh_report() -> None:
    """Regenerate report.md after mutations (best-effort, never fatal)."""
    if _vellum_dir is None:
        return
    try:
        write_report(_get_db(), _vellum_dir / REPORT_FILENAME)
    except (OSError, VellumError):
        (_logger or logging.getLogger(__name__)).warning("Failed to write report.md", exc_info=True)


def _text(content: Any) -> list[TextContent]:
    if isinstance(content, str):
        return [TextContent(type="text", text=content)]
    return [TextContent(type="text", text=json.dumps(content, indent=2, default=str))]


def _error(exc: VellumError, tracker: VellumDB, issue_id: str | None = None) -> list[TextContent]:
    data: dict[str, Any] = {"error": str(exc), "code": exc.code, "hint": exc.hint}
    if isinstance(exc, InvalidTransitionError) and issue_id is not None:
        try:
            data["valid_transitions"] = tracker.valid_transitions(issue_id)
        except VellumError:
            pass
    return _text(data)


def _actor(arguments: dict[str, Any]) -> str:
    cleaned, err = sanitize_actor(arguments.get("actor", _DEFAULT_ACTOR))
    if err:
        raise ValidationError(err)
    return cleaned


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

REPORT_URI = "vellum://report"


@server.list_resources()  # type: ignore[untyped-decorator,no-untyped-call]
async def list_resources() -> list[Resource]:
    return [
        Resource(
            uri=REPORT_URI,  # type: ignore[arg-type]
            name="Compliance Report",
            description="Gate status, blocking issues, deferrals and content warnings",
            mimeType="text/markdown",
        ),
    ]


@server.read_resource()  # type: ignore[untyped-decorator,no-untyped-call]
async def read_report(uri: Any) -> str:
    if str(uri) == REPORT_URI:
        return render_report(_get_db())
    msg = f"Unknown resource: {uri}"
    raise ValueError(msg)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_ACTOR_PROP = {"type": "string", "description": "Agent/user identity for audit trail (default: mcp)"}


@server.list_tools()  # type: ignore[untyped-decorator,no-untyped-call]
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="list_issues",
            description="List compliance issues in ledger order with optional filters",
            inputSchema={
                "type": "object",
                "properties": {
                    "status": {"type": "string", "enum": list(VALID_STATUSES), "description": "Filter by status"},
                    "severity": {"type": "string", "enum": list(VALID_SEVERITIES), "description": "Filter by severity"},
                    "blocking_only": {
                        "type": "boolean",
                        "default": False,
                        "description": "Only issues currently blocking deployment",
                    },
                    "file_path": {"type": "string", "description": "Filter by content file path"},
                },
            },
        ),
        Tool(
            name="get_issue",
            description="Get full details of an issue including notes. Set include_transitions=true for valid next states.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Issue ID (e.g. SC-001)"},
                    "include_transitions": {"type": "boolean", "default": False},
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="add_issue",
            description="Record a new pending compliance issue. Omit id to allocate the next sequential id.",
            inputSchema={
                "type": "object",
                "properties": {
                    "file_path": {"type": "string", "description": "Affected content file"},
                    "issue_type": {"type": "string", "description": "Issue type (e.g. missing-immigration-disclaimer)"},
                    "severity": {"type": "string", "enum": list(VALID_SEVERITIES)},
                    "description": {"type": "string", "description": "What is wrong"},
                    "content_warnings": {"type": "array", "items": {"type": "string"}},
                    "required_actions": {"type": "array", "items": {"type": "string"}},
                    "blocks_deployment": {"type": "boolean", "default": False},
                    "id": {"type": "string", "description": "Explicit issue id"},
                    "actor": _ACTOR_PROP,
                },
                "required": ["file_path", "issue_type", "severity", "description"],
            },
        ),
        Tool(
            name="start_issue",
            description="Move a pending issue to in-progress",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Issue ID"},
                    "note": {"type": "string", "description": "Optional note"},
                    "actor": _ACTOR_PROP,
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="resolve_issue",
            description="Resolve an issue. Requires the fixing commit and who resolved it; resolution is final.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Issue ID"},
                    "assigned_commit": {"type": "string", "description": "Commit that fixed the content"},
                    "resolved_by": {"type": "string", "description": "Who resolved it (default: actor)"},
                    "note": {"type": "string", "description": "Resolution note"},
                    "actor": _ACTOR_PROP,
                },
                "required": ["id", "assigned_commit"],
            },
        ),
        Tool(
            name="defer_issue",
            description="Defer an issue with a justification. Deferred blocking issues still block deployment.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Issue ID"},
                    "justification": {"type": "string", "description": "Why the issue is deferred"},
                    "actor": _ACTOR_PROP,
                },
                "required": ["id", "justification"],
            },
        ),
        Tool(
            name="add_note",
            description="Append a note to an issue. Allowed in any status.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Issue ID"},
                    "text": {"type": "string", "description": "Note text"},
                    "actor": _ACTOR_PROP,
                },
                "required": ["id", "text"],
            },
        ),
        Tool(
            name="scan_content",
            description=(
                "Run the detection rules over a content string. Findings are recorded as pending issues "
                "unless dry_run=true; a finding already open for the same file and issue type is skipped."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "file_path": {"type": "string", "description": "Logical path of the content"},
                    "content": {"type": "string", "description": "Raw content to scan"},
                    "dry_run": {"type": "boolean", "default": False},
                    "actor": _ACTOR_PROP,
                },
                "required": ["file_path", "content"],
            },
        ),
        Tool(
            name="validate",
            description="Evaluate the deployment gate. Verdict is pass, warn (non-strict) or fail.",
            inputSchema={
                "type": "object",
                "properties": {"strict": {"type": "boolean", "default": False}},
            },
        ),
        Tool(
            name="report",
            description="Stakeholder compliance summary as markdown or structured JSON",
            inputSchema={
                "type": "object",
                "properties": {"format": {"type": "string", "enum": ["markdown", "json"], "default": "markdown"}},
            },
        ),
    ]


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------


@server.call_tool()  # type: ignore[untyped-decorator]
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    tracker = _get_db()
    t0 = time.monotonic()

    try:
        result = await _dispatch(name, arguments, tracker)
    except Exception:
        if _logger:
            _logger.error("tool_error", extra={"tool": name, "args_data": arguments}, exc_info=True)
        raise
    else:
        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        if _logger:
            _logger.info("tool_call", extra={"tool": name, "args_data": arguments, "duration_ms": duration_ms})
        return result


async def _dispatch(name: str, arguments: dict[str, Any], tracker: VellumDB) -> list[TextContent]:
    issue_id = arguments.get("id")
    try:
        match name:
            case "list_issues":
                issues = filter_issues(
                    tracker,
                    status=arguments.get("status"),
                    severity=arguments.get("severity"),
                    blocking=bool(arguments.get("blocking_only", False)),
                    file_path=arguments.get("file_path"),
                )
                return _text({"issues": [i.to_dict() for i in issues], "count": len(issues)})

            case "get_issue":
                data: dict[str, Any] = dict(tracker.get_issue(arguments["id"]).to_dict())
                if arguments.get("include_transitions"):
                    data["valid_transitions"] = tracker.valid_transitions(arguments["id"])
                return _text(data)

            case "add_issue":
                issue = tracker.create_issue(
                    arguments["file_path"],
                    arguments["issue_type"],
                    arguments["severity"],
                    arguments["description"],
                    required_actions=arguments.get("required_actions"),
                    content_warnings=arguments.get("content_warnings"),
                    blocks_deployment=bool(arguments.get("blocks_deployment", False)),
                    issue_id=arguments.get("id"),
                    actor=_actor(arguments),
                )
                _refresh_report()
                return _text(issue.to_dict())

            case "start_issue":
                issue = tracker.start_issue(arguments["id"], actor=_actor(arguments), note=arguments.get("note"))
                _refresh_report()
                return _text(issue.to_dict())

            case "resolve_issue":
                actor = _actor(arguments)
                issue = tracker.resolve_issue(
                    arguments["id"],
                    assigned_commit=arguments.get("assigned_commit"),
                    resolved_by=arguments.get("resolved_by") or actor,
                    note=arguments.get("note"),
                    actor=actor,
                )
                _refresh_report()
                return _text(issue.to_dict())

            case "defer_issue":
                issue = tracker.defer_issue(
                    arguments["id"],
                    justification=arguments.get("justification", ""),
                    actor=_actor(arguments),
                )
                _refresh_report()
                return _text(issue.to_dict())

            case "add_note":
                issue = tracker.add_note(arguments["id"], arguments.get("text", ""), author=_actor(arguments))
                _refresh_report()
                return _text({"id": issue.id, "note": issue.notes[-1].to_dict(), "note_count": len(issue.notes)})

            case "scan_content":
                engine = DetectionEngine(load_rules(rules_path_for(tracker.vellum_dir)))
                candidates = engine.scan(arguments["content"], arguments["file_path"])
                if arguments.get("dry_run"):
                    return _text({"candidates": [c.to_dict() for c in candidates], "created": [], "skipped": []})
                created, skipped = tracker.submit_candidates(candidates, actor=_actor(arguments))
                if created:
                    _refresh_report()
                return _text(
                    {
                        "candidates": [c.to_dict() for c in candidates],
                        "created": [i.to_dict() for i in created],
                        "skipped": [c.to_dict() for c in skipped],
                    }
                )

            case "validate":
                result = evaluate_safely(tracker, strict=bool(arguments.get("strict", False)))
                return _text(result.to_dict())

            case "report":
                if arguments.get("format") == "json":
                    return _text(report_data(tracker))
                return _text(render_report(tracker))

            case _:
                return _text({"error": f"Unknown tool: {name}", "code": "unknown_tool"})
    except VellumError as exc:
        return _error(exc, tracker, issue_id)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


async def _run(project_path: Path | None) -> None:
    global db, _vellum_dir, _logger

    if project_path:
        vellum_dir = project_path / VELLUM_DIR_NAME
        if not vellum_dir.is_dir():
            print(f"Error: {vellum_dir} not found. Run 'vellum init' first.", file=sys.stderr)
            sys.exit(1)
    else:
        try:
            vellum_dir = find_vellum_root()
        except FileNotFoundError:
            print(f"Error: No {VELLUM_DIR_NAME}/ found. Run 'vellum init' first.", file=sys.stderr)
            sys.exit(1)

    _vellum_dir = vellum_dir
    db = VellumDB.from_vellum_dir(vellum_dir)

    from vellum.logging import setup_logging

    _logger = setup_logging(vellum_dir)
    _logger.info("mcp_server_start", extra={"tool": "server", "args_data": {"project": str(vellum_dir.parent)}})

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    import asyncio

    parser = argparse.ArgumentParser(description="Vellum MCP server")
    parser.add_argument("--project", type=Path, default=None, help="Project root (auto-discovers .vellum/ if omitted)")
    args = parser.parse_args()

    asyncio.run(_run(args.project))


if __name__ == "__main__":
    main()
