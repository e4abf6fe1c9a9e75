"""Filtered views and stakeholder reports."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from vellum.core import VellumDB
from vellum.errors import ValidationError
from vellum.reporting import (
    _parse_iso,
    _sanitize_text,
    blocking_only,
    by_severity,
    by_status,
    filter_issues,
    render_report,
    report_data,
    write_report,
)


class TestViews:
    def test_by_status(self, populated_db: VellumDB) -> None:
        ids = populated_db._test_ids  # type: ignore[attr-defined]
        pending = by_status(populated_db.list_all(), "pending")
        assert [i.id for i in pending] == [ids["a"], ids["b"]]

    def test_by_severity(self, populated_db: VellumDB) -> None:
        ids = populated_db._test_ids  # type: ignore[attr-defined]
        assert [i.id for i in by_severity(populated_db.list_all(), "blocker")] == [ids["c"]]

    def test_blocking_only_keeps_ledger_order(self, populated_db: VellumDB) -> None:
        ids = populated_db._test_ids  # type: ignore[attr-defined]
        assert [i.id for i in blocking_only(populated_db.list_all())] == [ids["a"], ids["d"]]

    def test_invalid_filter_values(self, populated_db: VellumDB) -> None:
        with pytest.raises(ValidationError):
            by_status(populated_db.list_all(), "open")
        with pytest.raises(ValidationError):
            filter_issues(populated_db, severity="critical")

    def test_filters_combine(self, populated_db: VellumDB) -> None:
        ids = populated_db._test_ids  # type: ignore[attr-defined]
        found = filter_issues(populated_db, status="pending", blocking=True)
        assert [i.id for i in found] == [ids["a"]]

    def test_file_filter_normalizes(self, populated_db: VellumDB) -> None:
        ids = populated_db._test_ids  # type: ignore[attr-defined]
        found = filter_issues(populated_db, file_path="./guides/visa.html")
        assert [i.id for i in found] == [ids["c"]]

    def test_views_reflect_latest_state(self, populated_db: VellumDB) -> None:
        ids = populated_db._test_ids  # type: ignore[attr-defined]
        assert len(filter_issues(populated_db, blocking=True)) == 2
        populated_db.resolve_issue(ids["a"], assigned_commit="f00", resolved_by="editor")
        assert len(filter_issues(populated_db, blocking=True)) == 1


class TestReportData:
    def test_counts(self, populated_db: VellumDB) -> None:
        data = report_data(populated_db)
        assert data["total"] == 4
        assert data["by_status"] == {"pending": 2, "in-progress": 0, "resolved": 1, "deferred": 1}
        assert data["by_severity"] == {"blocker": 1, "high": 1, "medium": 1, "low": 1}
        assert data["by_issue_type"]["missing-disclaimer"] == 2

    def test_blocking_and_gate(self, populated_db: VellumDB) -> None:
        ids = populated_db._test_ids  # type: ignore[attr-defined]
        data = report_data(populated_db)
        assert data["open_blocking"] == [ids["a"], ids["d"]]
        assert data["deferred_blocking"] == [ids["d"]]
        assert data["gate"] == {"strict": "fail", "advisory": "warn"}

    def test_empty_ledger(self, db: VellumDB) -> None:
        data = report_data(db)
        assert data["total"] == 0
        assert data["gate"] == {"strict": "pass", "advisory": "pass"}


class TestRenderReport:
    def test_sections(self, populated_db: VellumDB) -> None:
        report = render_report(populated_db)
        assert report.startswith("# Compliance Report")
        assert "## Deployment Gate" in report
        assert "BLOCKED: 2 unresolved blocking issue(s)" in report
        assert "Pending: 2 | In Progress: 0 | Resolved: 1 | Deferred: 1 | Total: 4" in report

    def test_deferred_section_shows_justification(self, populated_db: VellumDB) -> None:
        report = render_report(populated_db)
        assert "## Deferred" in report
        assert "Waiting on the university's AI policy update" in report
        assert "(still blocking)" in report

    def test_deferred_reason_survives_later_notes(self, db: VellumDB) -> None:
        issue = db.create_issue("docs/visa.md", "missing-immigration-disclaimer", "high", "Visa guidance lacks a disclaimer")
        db.defer_issue(issue.id, justification="waiting on legal review", actor="editor")
        db.add_note(issue.id, "pinged legal again", author="editor")

        deferred_section = render_report(db).split("## Deferred")[1].split("## ")[0]
        assert f"- {issue.id} [high] missing-immigration-disclaimer: waiting on legal review" in deferred_section
        assert "pinged legal again" not in deferred_section

    def test_recently_resolved(self, populated_db: VellumDB) -> None:
        ids = populated_db._test_ids  # type: ignore[attr-defined]
        report = render_report(populated_db)
        assert f"- {ids['c']} missing-disclaimer by editor in abc123" in report

    def test_content_warnings_count_unresolved_only(self, populated_db: VellumDB) -> None:
        report = render_report(populated_db)
        assert "- funding-amounts: 1" in report
        assert "- ai-policy: 1" in report
        assert "immigration" not in report.split("## Content Warnings")[1]

    def test_clear_gate(self, db: VellumDB) -> None:
        report = render_report(db)
        assert "CLEAR: no unresolved blocking issues." in report
        assert "## Blocking Issues\n- (none)" in report

    def test_stale_section(self, db: VellumDB) -> None:
        issue = db.create_issue("old.html", "t", "high", "d")
        # Rewrite created_at directly in the ledger to simulate an old record
        text = db.ledger_path.read_text().replace(issue.created_at, "2020-01-01T00:00:00+00:00")
        db.ledger_path.write_text(text)
        report = render_report(db)
        assert "## Stale" in report
        assert issue.id in report.split("## Stale")[1]

    def test_untrusted_text_is_flattened(self, db: VellumDB) -> None:
        db.create_issue("a.html", "t", "high", "line one\nline two\x07", blocks_deployment=True)
        report = render_report(db)
        assert "line one line two" in report
        assert "\x07" not in report


class TestWriteReport:
    def test_writes_file(self, populated_db: VellumDB, tmp_path: Path) -> None:
        out = tmp_path / "report.md"
        write_report(populated_db, out)
        assert out.read_text().startswith("# Compliance Report")
        assert not list(tmp_path.glob(".report_*.tmp"))

    def test_overwrites_existing(self, db: VellumDB, tmp_path: Path) -> None:
        out = tmp_path / "report.md"
        out.write_text("stale")
        write_report(db, out)
        assert "stale" not in out.read_text()


class TestHelpers:
    def test_sanitize_truncates(self) -> None:
        assert _sanitize_text("x" * 300, 10) == "xxxxxxx..."

    def test_parse_iso_naive_is_utc(self) -> None:
        assert _parse_iso("2026-01-01T00:00:00").tzinfo is not None

    def test_parse_iso_garbage_is_now(self) -> None:
        assert _parse_iso("not a date").year >= 2026

    def test_resolved_copy_is_not_blocking(self, populated_db: VellumDB) -> None:
        issue = populated_db.list_all()[0]
        assert replace(issue, status="resolved").is_blocking is False
