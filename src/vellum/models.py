"""Issue record model and its JSON Lines (de)serialization.

``Issue`` is immutable; the lifecycle layer produces changed copies with
``dataclasses.replace`` and hands them to the store as whole records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, cast

from vellum.errors import ValidationError
from vellum.types.core import IssueDict, ISOTimestamp, NoteDict

Status = Literal["pending", "in-progress", "resolved", "deferred"]
Severity = Literal["blocker", "high", "medium", "low"]

VALID_STATUSES: tuple[str, ...] = ("pending", "in-progress", "resolved", "deferred")
TERMINAL_STATUSES: frozenset[str] = frozenset({"resolved", "deferred"})

# Decreasing urgency; index doubles as sort rank.
VALID_SEVERITIES: tuple[str, ...] = ("blocker", "high", "medium", "low")
SEVERITY_RANK: dict[str, int] = {s: i for i, s in enumerate(VALID_SEVERITIES)}

# Note.kind for the justification written by the deferral transition.
DEFERRAL_NOTE_KIND = "deferral"

_REQUIRED_KEYS = (
    "id",
    "created_at",
    "status",
    "file_path",
    "issue_type",
    "severity",
    "description",
    "required_actions",
    "content_warnings",
    "blocks_deployment",
    "assigned_commit",
    "resolved_at",
    "resolved_by",
    "notes",
)


def normalize_warnings(warnings: list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    """Collapse content warnings to a sorted, de-duplicated tuple of non-empty tags."""
    if not warnings:
        return ()
    return tuple(sorted({w.strip() for w in warnings if w and w.strip()}))


@dataclass(frozen=True)
class Note:
    text: str
    author: str = ""
    created_at: str = ""
    kind: str = ""

    def to_dict(self) -> NoteDict:
        data = NoteDict(text=self.text, author=self.author, created_at=ISOTimestamp(self.created_at))
        if self.kind:
            data["kind"] = self.kind
        return data


@dataclass(frozen=True)
class Issue:
    id: str
    created_at: str
    file_path: str
    issue_type: str
    severity: str
    description: str = ""
    status: str = "pending"
    required_actions: tuple[str, ...] = ()
    content_warnings: tuple[str, ...] = ()
    blocks_deployment: bool = False
    assigned_commit: str | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None
    notes: tuple[Note, ...] = field(default_factory=tuple)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_blocking(self) -> bool:
        """True while this issue holds the deployment gate shut."""
        return self.blocks_deployment and self.status != "resolved"

    @property
    def deferral_note(self) -> Note | None:
        """The justification recorded when the issue was deferred, if any."""
        return next((n for n in reversed(self.notes) if n.kind == DEFERRAL_NOTE_KIND), None)

    def check_invariants(self) -> None:
        """Raise ValidationError if the record violates a ledger invariant."""
        if self.status not in VALID_STATUSES:
            msg = f"Invalid status '{self.status}' on {self.id}. Valid: {', '.join(VALID_STATUSES)}"
            raise ValidationError(msg)
        if self.severity not in VALID_SEVERITIES:
            msg = f"Invalid severity '{self.severity}' on {self.id}. Valid: {', '.join(VALID_SEVERITIES)}"
            raise ValidationError(msg)
        audit = (self.assigned_commit, self.resolved_at, self.resolved_by)
        if self.status == "resolved":
            if not all(audit):
                msg = f"Resolved issue {self.id} must carry assigned_commit, resolved_at and resolved_by"
                raise ValidationError(msg)
        elif any(v is not None for v in audit):
            msg = f"Issue {self.id} is '{self.status}' but carries resolution fields"
            raise ValidationError(msg)

    def to_dict(self) -> IssueDict:
        # Key order is the on-disk column order; keep it stable for diffs.
        return IssueDict(
            id=self.id,
            created_at=ISOTimestamp(self.created_at),
            status=self.status,
            file_path=self.file_path,
            issue_type=self.issue_type,
            severity=self.severity,
            description=self.description,
            required_actions=list(self.required_actions),
            content_warnings=list(self.content_warnings),
            blocks_deployment=self.blocks_deployment,
            assigned_commit=self.assigned_commit,
            resolved_at=ISOTimestamp(self.resolved_at) if self.resolved_at is not None else None,
            resolved_by=self.resolved_by,
            notes=[n.to_dict() for n in self.notes],
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Issue:
        """Build an Issue from a persisted record.

        Raises ValueError describing the first problem found; the store wraps
        it in MalformedRecordError with the line number.
        """
        missing = [k for k in _REQUIRED_KEYS if k not in data]
        if missing:
            msg = f"missing keys: {', '.join(missing)}"
            raise ValueError(msg)
        for key in ("id", "created_at", "status", "file_path", "issue_type", "severity", "description"):
            if not isinstance(data[key], str):
                msg = f"{key} must be a string"
                raise ValueError(msg)
        for key in ("assigned_commit", "resolved_at", "resolved_by"):
            if data[key] is not None and not isinstance(data[key], str):
                msg = f"{key} must be a string or null"
                raise ValueError(msg)
        if not isinstance(data["blocks_deployment"], bool):
            msg = "blocks_deployment must be a boolean"
            raise ValueError(msg)
        for key in ("required_actions", "content_warnings"):
            value = data[key]
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                msg = f"{key} must be a list of strings"
                raise ValueError(msg)
        raw_notes = data["notes"]
        if not isinstance(raw_notes, list):
            msg = "notes must be a list"
            raise ValueError(msg)
        notes: list[Note] = []
        for raw in raw_notes:
            if not isinstance(raw, dict) or not isinstance(raw.get("text"), str):
                msg = "each note must be an object with a text string"
                raise ValueError(msg)
            notes.append(
                Note(
                    text=raw["text"],
                    author=str(raw.get("author", "")),
                    created_at=str(raw.get("created_at", "")),
                    kind=str(raw.get("kind", "")),
                )
            )

        issue = cls(
            id=data["id"],
            created_at=data["created_at"],
            status=data["status"],
            file_path=data["file_path"],
            issue_type=data["issue_type"],
            severity=data["severity"],
            description=data["description"],
            required_actions=tuple(data["required_actions"]),
            content_warnings=tuple(data["content_warnings"]),
            blocks_deployment=data["blocks_deployment"],
            assigned_commit=data["assigned_commit"],
            resolved_at=data["resolved_at"],
            resolved_by=data["resolved_by"],
            notes=tuple(notes),
        )
        try:
            issue.check_invariants()
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
        return issue


def as_status(value: str) -> Status:
    if value not in VALID_STATUSES:
        msg = f"Invalid status '{value}'. Valid: {', '.join(VALID_STATUSES)}"
        raise ValidationError(msg)
    return cast(Status, value)


def as_severity(value: str) -> Severity:
    if value not in VALID_SEVERITIES:
        msg = f"Invalid severity '{value}'. Valid: {', '.join(VALID_SEVERITIES)}"
        raise ValidationError(msg)
    return cast(Severity, value)
