"""Typed errors raised by the vellum core.

Every error carries a stable ``code`` (used in JSON/MCP/HTTP payloads) and a
remediation ``hint`` that the CLI prints beneath the message.
"""

from __future__ import annotations


class VellumError(Exception):
    """Base class for all governance-engine errors."""

    code = "error"
    hint = ""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        if hint is not None:
            self.hint = hint

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, str]:
        return {"error": str(self), "code": self.code, "kind": self.kind, "hint": self.hint}


class ValidationError(VellumError):
    """A required field is missing or malformed for the requested operation."""

    code = "validation_error"
    hint = "Supply the missing field and retry."


class InvalidTransitionError(VellumError):
    """Transition out of a terminal state, or one the state machine does not define."""

    code = "invalid_transition"
    hint = "Resolved and deferred issues are final; add a note or file a superseding issue."


class NotFoundError(VellumError, KeyError):
    code = "not_found"
    hint = "Run 'vellum list' to see known issue ids."

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0]) if self.args else ""


class DuplicateIdError(VellumError):
    code = "duplicate_id"
    hint = "Issue ids are never reused; omit --id to allocate the next one."


class LockTimeoutError(VellumError):
    code = "lock_timeout"
    hint = "Another vellum process holds the ledger lock; retry once it finishes."


class MalformedRecordError(VellumError):
    """A persisted ledger line failed to parse."""

    code = "malformed_record"
    hint = "Repair the named line in issues.jsonl by hand; records are never skipped."
