"""Issue state machine: allowed transitions, required fields, audit trail."""

from __future__ import annotations

import pytest

from vellum.core import VellumDB
from vellum.db_lifecycle import TRANSITIONS
from vellum.errors import InvalidTransitionError, NotFoundError, ValidationError
from vellum.models import Issue


@pytest.fixture
def issue(db: VellumDB) -> Issue:
    return db.create_issue(
        "programs/funding.html",
        "unverified-funding-amount",
        "high",
        "Stipend amount unverified",
        blocks_deployment=True,
    )


class TestCreate:
    def test_new_issue_is_pending(self, issue: Issue) -> None:
        assert issue.status == "pending"
        assert issue.assigned_commit is None
        assert issue.resolved_at is None
        assert issue.resolved_by is None
        assert issue.notes == ()

    def test_warnings_are_deduplicated_and_sorted(self, db: VellumDB) -> None:
        issue = db.create_issue("a.html", "t", "low", "d", content_warnings=["legal", "immigration", "legal", " "])
        assert issue.content_warnings == ("immigration", "legal")

    def test_file_path_is_normalized(self, db: VellumDB) -> None:
        issue = db.create_issue("./guides//visa.html", "t", "low", "d")
        assert issue.file_path == "guides/visa.html"

    @pytest.mark.parametrize("field", ["file_path", "issue_type", "description"])
    def test_required_text_fields(self, db: VellumDB, field: str) -> None:
        kwargs = {"file_path": "a.html", "issue_type": "t", "description": "d"}
        kwargs[field] = "  "
        with pytest.raises(ValidationError, match=field):
            db.create_issue(kwargs["file_path"], kwargs["issue_type"], "low", kwargs["description"])

    def test_unknown_severity_rejected(self, db: VellumDB) -> None:
        with pytest.raises(ValidationError, match="severity"):
            db.create_issue("a.html", "t", "critical", "d")
        assert len(db.list_all()) == 0

    def test_id_with_whitespace_rejected(self, db: VellumDB) -> None:
        with pytest.raises(ValidationError):
            db.create_issue("a.html", "t", "low", "d", issue_id="SC 001")


class TestTransitions:
    def test_table_has_no_exits_from_terminal_states(self) -> None:
        assert not TRANSITIONS["resolved"]
        assert not TRANSITIONS["deferred"]

    def test_start_moves_to_in_progress(self, db: VellumDB, issue: Issue) -> None:
        assert db.start_issue(issue.id).status == "in-progress"

    def test_resolve_from_pending(self, db: VellumDB, issue: Issue) -> None:
        resolved = db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by="editor")
        assert resolved.status == "resolved"
        assert resolved.assigned_commit == "abc123"
        assert resolved.resolved_by == "editor"
        assert resolved.resolved_at is not None

    def test_resolve_from_in_progress(self, db: VellumDB, issue: Issue) -> None:
        db.start_issue(issue.id)
        assert db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by="editor").status == "resolved"

    def test_resolve_with_note(self, db: VellumDB, issue: Issue) -> None:
        resolved = db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by="editor", note="Added disclaimer")
        assert resolved.notes[-1].text == "Added disclaimer"

    def test_resolve_requires_commit(self, db: VellumDB, issue: Issue) -> None:
        with pytest.raises(ValidationError, match="assigned_commit"):
            db.resolve_issue(issue.id, assigned_commit="", resolved_by="editor")
        assert db.get_issue(issue.id).status == "pending"

    def test_resolve_requires_resolver(self, db: VellumDB, issue: Issue) -> None:
        with pytest.raises(ValidationError, match="resolved_by"):
            db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by=None)
        assert db.get_issue(issue.id) == issue

    def test_resolver_with_control_chars_rejected(self, db: VellumDB, issue: Issue) -> None:
        with pytest.raises(ValidationError):
            db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by="ed\nitor")

    def test_defer_records_justification_as_note(self, db: VellumDB, issue: Issue) -> None:
        deferred = db.defer_issue(issue.id, justification="Awaiting department confirmation", actor="editor")
        assert deferred.status == "deferred"
        assert deferred.notes[-1].text == "Awaiting department confirmation"
        assert deferred.notes[-1].author == "editor"
        assert deferred.deferral_note == deferred.notes[-1]
        assert deferred.notes[-1].kind == "deferral"

    def test_deferral_note_precedes_extra_annotations(self, db: VellumDB, issue: Issue) -> None:
        db.defer_issue(issue.id, justification="Awaiting department confirmation", actor="editor")
        annotated = db.add_note(issue.id, "Chased the department", author="editor")
        assert annotated.notes[-1].kind == ""
        assert annotated.deferral_note is not None
        assert annotated.deferral_note.text == "Awaiting department confirmation"

    def test_defer_requires_justification(self, db: VellumDB, issue: Issue) -> None:
        with pytest.raises(ValidationError, match="justification"):
            db.defer_issue(issue.id, justification="   ")
        assert db.get_issue(issue.id).status == "pending"

    def test_cannot_start_twice(self, db: VellumDB, issue: Issue) -> None:
        db.start_issue(issue.id)
        with pytest.raises(InvalidTransitionError):
            db.start_issue(issue.id)

    def test_resolved_is_terminal(self, db: VellumDB, issue: Issue) -> None:
        db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by="editor")
        with pytest.raises(InvalidTransitionError):
            db.start_issue(issue.id)
        with pytest.raises(InvalidTransitionError):
            db.defer_issue(issue.id, justification="too late")
        with pytest.raises(InvalidTransitionError):
            db.resolve_issue(issue.id, assigned_commit="def456", resolved_by="editor")
        assert db.get_issue(issue.id).assigned_commit == "abc123"

    def test_deferred_is_terminal(self, db: VellumDB, issue: Issue) -> None:
        db.defer_issue(issue.id, justification="later")
        with pytest.raises(InvalidTransitionError):
            db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by="editor")
        with pytest.raises(InvalidTransitionError):
            db.transition_issue(issue.id, "pending")

    def test_unknown_target_status(self, db: VellumDB, issue: Issue) -> None:
        with pytest.raises(InvalidTransitionError):
            db.transition_issue(issue.id, "closed")

    def test_back_to_pending_not_defined(self, db: VellumDB, issue: Issue) -> None:
        db.start_issue(issue.id)
        with pytest.raises(InvalidTransitionError):
            db.transition_issue(issue.id, "pending")

    def test_unknown_issue(self, db: VellumDB) -> None:
        with pytest.raises(NotFoundError):
            db.start_issue("SC-999")

    def test_valid_transitions(self, db: VellumDB, issue: Issue) -> None:
        assert db.valid_transitions(issue.id) == ["deferred", "in-progress", "resolved"]
        db.start_issue(issue.id)
        assert db.valid_transitions(issue.id) == ["deferred", "resolved"]
        db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by="editor")
        assert db.valid_transitions(issue.id) == []

    def test_immutable_fields_survive_transitions(self, db: VellumDB, issue: Issue) -> None:
        db.start_issue(issue.id)
        resolved = db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by="editor")
        assert resolved.id == issue.id
        assert resolved.created_at == issue.created_at
        assert resolved.blocks_deployment is True


class TestNotes:
    def test_notes_append_in_order(self, db: VellumDB, issue: Issue) -> None:
        db.add_note(issue.id, "first", author="a")
        updated = db.add_note(issue.id, "second", author="b")
        assert [n.text for n in updated.notes] == ["first", "second"]
        assert updated.notes[0].created_at

    def test_note_allowed_on_terminal_issue(self, db: VellumDB, issue: Issue) -> None:
        db.resolve_issue(issue.id, assigned_commit="abc123", resolved_by="editor")
        updated = db.add_note(issue.id, "Verified on production")
        assert updated.status == "resolved"
        assert updated.notes[-1].text == "Verified on production"

    def test_empty_note_rejected(self, db: VellumDB, issue: Issue) -> None:
        with pytest.raises(ValidationError):
            db.add_note(issue.id, "")

    def test_note_on_unknown_issue(self, db: VellumDB) -> None:
        with pytest.raises(NotFoundError):
            db.add_note("SC-999", "hello")
