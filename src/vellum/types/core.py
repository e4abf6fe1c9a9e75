"""Foundational TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import NewType, NotRequired, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class ProjectConfig(TypedDict, total=False):
    """Shape of .vellum/config.json."""

    prefix: str
    version: int
    lock_timeout: float
    rules: str


class NoteDict(TypedDict):
    text: str
    author: str
    created_at: ISOTimestamp
    kind: NotRequired[str]  # written only for notes a transition records


class IssueDict(TypedDict):
    id: str
    created_at: ISOTimestamp
    status: str
    file_path: str
    issue_type: str
    severity: str
    description: str
    required_actions: list[str]
    content_warnings: list[str]
    blocks_deployment: bool
    assigned_commit: str | None
    resolved_at: ISOTimestamp | None
    resolved_by: str | None
    notes: list[NoteDict]


class GateResultDict(TypedDict):
    verdict: str
    strict: bool
    passed: bool
    exit_code: int
    blocking_count: int
    blocking: list[IssueDict]
    checked_at: ISOTimestamp
    error: str | None


class ReportData(TypedDict):
    generated_at: ISOTimestamp
    total: int
    by_status: dict[str, int]
    by_severity: dict[str, int]
    by_issue_type: dict[str, int]
    open_blocking: list[str]
    deferred_blocking: list[str]
    gate: dict[str, str]
