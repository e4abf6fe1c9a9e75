"""Read-only views and stakeholder reports over the issue ledger.

Every function reads the ledger afresh on each call; nothing is cached
between calls and nothing here writes to the ledger.
"""

from __future__ import annotations

import contextlib
import os
import re
import tempfile
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from vellum.core import VellumDB
from vellum.db_base import normalize_file_path
from vellum.gate import blocking_issues
from vellum.models import SEVERITY_RANK, VALID_SEVERITIES, VALID_STATUSES, Issue, as_severity, as_status
from vellum.types.core import ISOTimestamp, ReportData

STALE_THRESHOLD_DAYS = 14

# Matches C0/C1 control characters except tab/newline (which we handle separately)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


def _sanitize_text(text: str, limit: int = 200) -> str:
    """Sanitize untrusted text for safe single-line markdown interpolation."""
    text = _CONTROL_CHARS_RE.sub("", text)
    text = " ".join(text.split())
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


def _parse_iso(ts: str) -> datetime:
    """Parse an ISO timestamp into a UTC-aware datetime (now on failure)."""
    try:
        dt = datetime.fromisoformat(ts)
        if dt.tzinfo is None:
            return dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)
    except (ValueError, TypeError):
        return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Filtered views
# ---------------------------------------------------------------------------


def by_status(issues: Iterable[Issue], status: str) -> list[Issue]:
    as_status(status)
    return [i for i in issues if i.status == status]


def by_severity(issues: Iterable[Issue], severity: str) -> list[Issue]:
    as_severity(severity)
    return [i for i in issues if i.severity == severity]


def blocking_only(issues: Iterable[Issue]) -> list[Issue]:
    """Issues currently holding the deployment gate shut, in ledger order."""
    return [i for i in issues if i.is_blocking]


def filter_issues(
    db: VellumDB,
    *,
    status: str | None = None,
    severity: str | None = None,
    blocking: bool = False,
    file_path: str | None = None,
) -> list[Issue]:
    """Combine the views above over a fresh ledger snapshot (ledger order)."""
    issues: list[Issue] = list(db.list_all())
    if status is not None:
        issues = by_status(issues, status)
    if severity is not None:
        issues = by_severity(issues, severity)
    if blocking:
        issues = blocking_only(issues)
    if file_path is not None:
        wanted = normalize_file_path(file_path)
        issues = [i for i in issues if i.file_path == wanted]
    return issues


# ---------------------------------------------------------------------------
# Machine-readable summary
# ---------------------------------------------------------------------------


def report_data(db: VellumDB) -> ReportData:
    issues = tuple(db.list_all())
    by_status_counts = {s: 0 for s in VALID_STATUSES}
    by_severity_counts = {s: 0 for s in VALID_SEVERITIES}
    for issue in issues:
        by_status_counts[issue.status] += 1
        by_severity_counts[issue.severity] += 1
    blocking = blocking_issues(issues)
    return ReportData(
        generated_at=ISOTimestamp(datetime.now(UTC).isoformat(timespec="seconds")),
        total=len(issues),
        by_status=by_status_counts,
        by_severity=by_severity_counts,
        by_issue_type=dict(sorted(Counter(i.issue_type for i in issues).items())),
        open_blocking=[i.id for i in blocking],
        deferred_blocking=[i.id for i in blocking if i.status == "deferred"],
        gate={"strict": "fail" if blocking else "pass", "advisory": "warn" if blocking else "pass"},
    )


# ---------------------------------------------------------------------------
# Stakeholder report
# ---------------------------------------------------------------------------


def _issue_line(issue: Issue) -> str:
    return f"- {issue.id} [{issue.severity}] {issue.status} `{_sanitize_text(issue.file_path, 120)}` {issue.issue_type}: {_sanitize_text(issue.description, 160)}"


def render_report(db: VellumDB) -> str:
    """Render the markdown compliance summary for stakeholders."""
    now = datetime.now(UTC)
    issues = tuple(db.list_all())
    blocking = blocking_issues(issues)
    unresolved = [i for i in issues if i.status != "resolved"]

    lines: list[str] = []
    lines.append(f"# Compliance Report (generated {now.isoformat(timespec='seconds')})")
    lines.append("")

    # -- Gate
    lines.append("## Deployment Gate")
    if blocking:
        lines.append(f"BLOCKED: {len(blocking)} unresolved blocking issue(s). Strict validation will fail.")
    else:
        lines.append("CLEAR: no unresolved blocking issues.")
    lines.append("")

    # -- Vitals
    counts = Counter(i.status for i in issues)
    lines.append("## Vitals")
    lines.append(
        f"Pending: {counts['pending']} | In Progress: {counts['in-progress']} | "
        f"Resolved: {counts['resolved']} | Deferred: {counts['deferred']} | Total: {len(issues)}"
    )
    lines.append("")

    # -- Severity (unresolved / total)
    lines.append("## By Severity (unresolved / total)")
    sev_total = Counter(i.severity for i in issues)
    sev_open = Counter(i.severity for i in unresolved)
    for sev in VALID_SEVERITIES:
        lines.append(f"- {sev}: {sev_open[sev]} / {sev_total[sev]}")
    lines.append("")

    # -- Blocking
    lines.append("## Blocking Issues")
    if blocking:
        for issue in blocking:
            lines.append(_issue_line(issue))
    else:
        lines.append("- (none)")
    lines.append("")

    # -- Deferred, with their justification
    deferred = [i for i in issues if i.status == "deferred"]
    if deferred:
        lines.append("## Deferred")
        for issue in deferred:
            deferral = issue.deferral_note
            reason = _sanitize_text(deferral.text, 120) if deferral is not None else "(no justification recorded)"
            marker = " (still blocking)" if issue.blocks_deployment else ""
            lines.append(f"- {issue.id} [{issue.severity}] {issue.issue_type}{marker}: {reason}")
        lines.append("")

    # -- Stale pending work
    stale = [
        i
        for i in unresolved
        if i.status in ("pending", "in-progress") and (now - _parse_iso(i.created_at)).days >= STALE_THRESHOLD_DAYS
    ]
    if stale:
        lines.append(f"## Stale (open >{STALE_THRESHOLD_DAYS} days)")
        for issue in sorted(stale, key=lambda i: SEVERITY_RANK[i.severity]):
            age = (now - _parse_iso(issue.created_at)).days
            lines.append(f"- {issue.id} [{issue.severity}] {issue.status} ({age}d old)")
        lines.append("")

    # -- Content warnings on unresolved issues
    warnings = Counter(w for i in unresolved for w in i.content_warnings)
    lines.append("## Content Warnings (unresolved)")
    if warnings:
        for tag, n in sorted(warnings.items(), key=lambda kv: (-kv[1], kv[0])):
            lines.append(f"- {tag}: {n}")
    else:
        lines.append("- (none)")
    lines.append("")

    # -- Files with the most unresolved issues (top 10)
    files = Counter(i.file_path for i in unresolved)
    if files:
        lines.append("## Files Needing Attention (top 10)")
        for path, n in sorted(files.items(), key=lambda kv: (-kv[1], kv[0]))[:10]:
            lines.append(f"- `{_sanitize_text(path, 120)}`: {n}")
        lines.append("")

    # -- Recently resolved (last 10 by resolution time)
    resolved = sorted(
        (i for i in issues if i.status == "resolved"),
        key=lambda i: _parse_iso(i.resolved_at or ""),
        reverse=True,
    )
    lines.append("## Recently Resolved")
    if resolved:
        for issue in resolved[:10]:
            lines.append(f"- {issue.id} {issue.issue_type} by {_sanitize_text(issue.resolved_by or '', 64)} in {issue.assigned_commit}")
    else:
        lines.append("- (none)")
    lines.append("")

    return "\n".join(lines)


def write_report(db: VellumDB, output_path: str | Path) -> None:
    """Generate and write the report atomically (write-temp then rename)."""
    report = render_report(db)
    output = Path(output_path)
    fd, tmp_name = tempfile.mkstemp(dir=output.parent, suffix=".tmp", prefix=".report_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(report)
        os.replace(tmp_name, str(output))
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
