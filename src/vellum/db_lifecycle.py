"""LifecycleMixin: the issue state machine.

Composed into ``VellumDB``. Every status change is a single
``IssueStore.update`` call whose mutation validates against the freshest
committed record, so a rejected transition leaves the ledger untouched and
two concurrent transitions on the same issue cannot interleave.

    pending ──► in-progress ──► resolved
       │             │
       ├─────────────┴────────► deferred
       └──────────────────────► resolved
"""

from __future__ import annotations

import logging
from dataclasses import replace

from vellum.db_base import DBMixinProtocol, _now_iso
from vellum.errors import InvalidTransitionError, ValidationError
from vellum.models import DEFERRAL_NOTE_KIND, TERMINAL_STATUSES, VALID_STATUSES, Issue, Note
from vellum.validation import sanitize_identity

logger = logging.getLogger(__name__)

TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in-progress", "resolved", "deferred"}),
    "in-progress": frozenset({"resolved", "deferred"}),
    "resolved": frozenset(),
    "deferred": frozenset(),
}


def _check_transition(current: Issue, to_status: str) -> None:
    if current.status in TERMINAL_STATUSES:
        msg = f"Issue {current.id} is '{current.status}' (terminal); cannot move to '{to_status}'"
        raise InvalidTransitionError(msg)
    if to_status not in VALID_STATUSES:
        msg = f"Unknown status '{to_status}'. Valid: {', '.join(VALID_STATUSES)}"
        raise InvalidTransitionError(msg)
    allowed = TRANSITIONS[current.status]
    if to_status not in allowed:
        msg = f"Transition '{current.status}' -> '{to_status}' is not defined for {current.id}. Allowed: {', '.join(sorted(allowed))}"
        raise InvalidTransitionError(msg)


def _clean_identity(value: str, field_name: str) -> str:
    cleaned, err = sanitize_identity(value, field=field_name)
    if err:
        raise ValidationError(err)
    return cleaned


class LifecycleMixin(DBMixinProtocol):
    """State-machine operations for VellumDB."""

    def valid_transitions(self, issue_id: str) -> list[str]:
        """Statuses reachable from the issue's current status (empty when terminal)."""
        issue = self.get_issue(issue_id)
        return sorted(TRANSITIONS[issue.status])

    def transition_issue(
        self,
        issue_id: str,
        to_status: str,
        *,
        actor: str = "",
        assigned_commit: str | None = None,
        resolved_by: str | None = None,
        justification: str | None = None,
        note: str | None = None,
    ) -> Issue:
        """Move an issue to *to_status*, enforcing that transition's required fields.

        Raises NotFoundError, InvalidTransitionError or ValidationError; on any
        of them the stored record is unchanged.
        """
        old_status: list[str] = []

        def mutate(current: Issue) -> Issue:
            _check_transition(current, to_status)
            old_status.append(current.status)
            now = _now_iso()
            extra_notes: tuple[Note, ...] = ()
            if note and note.strip():
                extra_notes = (Note(text=note.strip(), author=actor, created_at=now),)

            if to_status == "resolved":
                commit = (assigned_commit or "").strip()
                by = (resolved_by or "").strip()
                missing = [name for name, value in (("assigned_commit", commit), ("resolved_by", by)) if not value]
                if missing:
                    msg = f"Cannot resolve {current.id}: missing {', '.join(missing)}"
                    raise ValidationError(msg)
                by = _clean_identity(by, "resolved_by")
                return replace(
                    current,
                    status="resolved",
                    assigned_commit=commit,
                    resolved_by=by,
                    resolved_at=now,
                    notes=current.notes + extra_notes,
                )

            if to_status == "deferred":
                reason = (justification or "").strip()
                if not reason:
                    msg = f"Cannot defer {current.id}: a non-empty justification is required"
                    raise ValidationError(msg)
                deferral = Note(text=reason, author=actor, created_at=now, kind=DEFERRAL_NOTE_KIND)
                return replace(current, status="deferred", notes=current.notes + (deferral,) + extra_notes)

            return replace(current, status=to_status, notes=current.notes + extra_notes)

        updated = self.store.update(issue_id, mutate)
        logger.info(
            "issue_transition",
            extra={"issue_id": issue_id, "args_data": {"from": old_status[-1], "to": to_status, "actor": actor}},
        )
        return updated

    def start_issue(self, issue_id: str, *, actor: str = "", note: str | None = None) -> Issue:
        return self.transition_issue(issue_id, "in-progress", actor=actor, note=note)

    def resolve_issue(
        self,
        issue_id: str,
        *,
        assigned_commit: str | None,
        resolved_by: str | None,
        note: str | None = None,
        actor: str = "",
    ) -> Issue:
        return self.transition_issue(
            issue_id,
            "resolved",
            actor=actor or (resolved_by or ""),
            assigned_commit=assigned_commit,
            resolved_by=resolved_by,
            note=note,
        )

    def defer_issue(self, issue_id: str, *, justification: str, actor: str = "") -> Issue:
        return self.transition_issue(issue_id, "deferred", actor=actor, justification=justification)

    def add_note(self, issue_id: str, text: str, *, author: str = "") -> Issue:
        """Append an annotation. Allowed in every status, terminal ones included."""
        if not text or not text.strip():
            msg = "Note text cannot be empty"
            raise ValidationError(msg)
        note = Note(text=text.strip(), author=author, created_at=_now_iso())
        updated = self.store.update(issue_id, lambda current: replace(current, notes=current.notes + (note,)))
        logger.info("note_added", extra={"issue_id": issue_id, "args_data": {"author": author}})
        return updated
