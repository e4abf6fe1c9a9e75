"""Durable, append-ordered ledger of compliance issues.

One JSON object per line in ``.vellum/issues.jsonl``. New issues are appended
as whole lines (fsync'd); updates rewrite the full ledger through a temp file
and ``os.replace`` so readers see either the old or the new file.

A sidecar ``issues.jsonl.lock`` serialises writers with ``fcntl.flock``
(exclusive) and lets readers take a shared lock for a consistent snapshot.
Lock acquisition is non-blocking with exponential backoff up to
``lock_timeout`` seconds, then ``LockTimeoutError``.

A line is committed once its trailing newline is on disk. A final fragment
without one is an interrupted append: readers ignore it and the next writer
truncates it. Any complete line that fails to parse raises
``MalformedRecordError`` rather than being skipped.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import re
import time
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import overload

from vellum.db_base import write_atomic
from vellum.errors import DuplicateIdError, LockTimeoutError, MalformedRecordError, NotFoundError, ValidationError
from vellum.models import Issue

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0
_BACKOFF_START = 0.01
_BACKOFF_MAX = 0.25


def serialize_issue(issue: Issue) -> str:
    """Render an issue as a single JSON line (no trailing newline)."""
    return json.dumps(issue.to_dict(), ensure_ascii=False)


def next_sequence_id(prefix: str, issues: Sequence[Issue]) -> str:
    """Return the id after the highest ``<prefix>-<n>`` seen in *issues*."""
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    highest = 0
    for issue in issues:
        m = pattern.match(issue.id)
        if m:
            highest = max(highest, int(m.group(1)))
    return f"{prefix}-{highest + 1:03d}"


class LedgerView(Sequence[Issue]):
    """Read-only, lazily loaded snapshot of the ledger.

    The file is read on first access and the snapshot is then reused, so a
    view can be iterated any number of times with identical results. Each
    ``IssueStore.list_all()`` call returns a fresh view.
    """

    def __init__(self, loader: Callable[[], tuple[Issue, ...]]) -> None:
        self._loader = loader
        self._snapshot: tuple[Issue, ...] | None = None

    def _items(self) -> tuple[Issue, ...]:
        if self._snapshot is None:
            self._snapshot = self._loader()
        return self._snapshot

    @overload
    def __getitem__(self, index: int) -> Issue: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Issue, ...]: ...

    def __getitem__(self, index: int | slice) -> Issue | tuple[Issue, ...]:
        return self._items()[index]

    def __len__(self) -> int:
        return len(self._items())

    def __iter__(self) -> Iterator[Issue]:
        return iter(self._items())

    def __repr__(self) -> str:
        state = "unloaded" if self._snapshot is None else f"{len(self._snapshot)} issues"
        return f"<LedgerView {state}>"


class IssueStore:
    """File-backed issue ledger with serialized, atomic writes."""

    def __init__(self, path: str | Path, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout

    def initialize(self) -> None:
        """Create the ledger file (and its directory) if missing."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)

    # -- Locking -------------------------------------------------------------

    @contextlib.contextmanager
    def _locked(self, *, exclusive: bool) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        mode = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        with open(self.lock_path, "a") as lock_fd:
            deadline = time.monotonic() + self.lock_timeout
            delay = _BACKOFF_START
            attempts = 0
            while True:
                attempts += 1
                try:
                    fcntl.flock(lock_fd, mode | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        kind = "exclusive" if exclusive else "shared"
                        msg = f"Could not acquire {kind} lock on {self.path.name} within {self.lock_timeout:g}s ({attempts} attempts)"
                        raise LockTimeoutError(msg) from None
                    logger.debug("Ledger lock busy, retrying in %.3fs", delay)
                    time.sleep(min(delay, remaining))
                    delay = min(delay * 2, _BACKOFF_MAX)
            try:
                yield
            finally:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)

    # -- Raw file access (caller holds the lock) -------------------------------

    def _read_all(self) -> list[Issue]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return []
        lines = raw.split(b"\n")
        tail = lines.pop()
        if tail.strip():
            logger.warning("Ignoring interrupted append at end of %s (%d bytes)", self.path, len(tail))

        issues: list[Issue] = []
        seen: set[str] = set()
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line.decode("utf-8"))
                if not isinstance(data, dict):
                    msg = "record must be a JSON object"
                    raise ValueError(msg)
                issue = Issue.from_dict(data)
            except ValueError as exc:
                # JSONDecodeError and UnicodeDecodeError are ValueError subclasses
                msg = f"{self.path.name} line {lineno}: {exc}"
                raise MalformedRecordError(msg) from exc
            if issue.id in seen:
                msg = f"{self.path.name} line {lineno}: duplicate id {issue.id}"
                raise MalformedRecordError(msg)
            seen.add(issue.id)
            issues.append(issue)
        return issues

    def _trim_torn_tail(self) -> None:
        """Drop a trailing fragment left by an interrupted append."""
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return
        if size == 0:
            return
        with open(self.path, "r+b") as fh:
            fh.seek(-1, os.SEEK_END)
            if fh.read(1) == b"\n":
                return
            fh.seek(0)
            data = fh.read()
            keep = data.rfind(b"\n") + 1
            fh.truncate(keep)
            fh.flush()
            os.fsync(fh.fileno())
        logger.warning("Truncated %d-byte interrupted append from %s", size - keep, self.path)

    def _append_line(self, issue: Issue) -> None:
        self._trim_torn_tail()
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write(serialize_issue(issue) + "\n")
            fh.flush()
            os.fsync(fh.fileno())

    def _write_all(self, issues: Sequence[Issue]) -> None:
        content = "".join(serialize_issue(i) + "\n" for i in issues)
        write_atomic(self.path, content, fsync=True)

    # -- Public API ------------------------------------------------------------

    def append(self, issue: Issue) -> Issue:
        """Append a new record. Raises DuplicateIdError if the id exists."""
        issue.check_invariants()
        with self._locked(exclusive=True):
            if any(i.id == issue.id for i in self._read_all()):
                msg = f"Issue id already exists: {issue.id}"
                raise DuplicateIdError(msg)
            self._append_line(issue)
        return issue

    def append_next(self, factory: Callable[[str], Issue], *, prefix: str) -> Issue:
        """Allocate the next sequence id and append ``factory(id)`` under one lock."""
        with self._locked(exclusive=True):
            existing = self._read_all()
            issue = factory(next_sequence_id(prefix, existing))
            issue.check_invariants()
            if any(i.id == issue.id for i in existing):
                msg = f"Issue id already exists: {issue.id}"
                raise DuplicateIdError(msg)
            self._append_line(issue)
        return issue

    def get(self, issue_id: str) -> Issue:
        with self._locked(exclusive=False):
            issues = self._read_all()
        for issue in issues:
            if issue.id == issue_id:
                return issue
        msg = f"Issue not found: {issue_id}"
        raise NotFoundError(msg)

    def update(self, issue_id: str, mutation: Callable[[Issue], Issue]) -> Issue:
        """Apply *mutation* to one record and rewrite the ledger atomically.

        *mutation* receives the freshest committed record and returns its
        replacement; if it raises, nothing is written.
        """
        with self._locked(exclusive=True):
            issues = self._read_all()
            for idx, current in enumerate(issues):
                if current.id == issue_id:
                    break
            else:
                msg = f"Issue not found: {issue_id}"
                raise NotFoundError(msg)

            updated = mutation(current)
            _check_audit_fields(current, updated)
            updated.check_invariants()
            issues[idx] = updated
            self._write_all(issues)
        return updated

    def list_all(self) -> LedgerView:
        """Return every record in write order, most recent last."""
        return LedgerView(self._snapshot)

    def _snapshot(self) -> tuple[Issue, ...]:
        with self._locked(exclusive=False):
            return tuple(self._read_all())


def _check_audit_fields(before: Issue, after: Issue) -> None:
    """Reject mutations that rewrite history rather than advance it."""
    for name in ("id", "created_at", "blocks_deployment"):
        if getattr(before, name) != getattr(after, name):
            msg = f"{name} is immutable (issue {before.id})"
            raise ValidationError(msg)
    if after.notes[: len(before.notes)] != before.notes:
        msg = f"notes are append-only (issue {before.id})"
        raise ValidationError(msg)
