"""Shared utilities and the Protocol for VellumDB mixins."""

from __future__ import annotations

import contextlib
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from vellum.models import Issue
    from vellum.store import IssueStore


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def write_atomic(path: Path, content: str, *, fsync: bool = False) -> None:
    """Write content to path atomically via temp file + os.replace().

    With *fsync* the temp file is flushed to disk before the rename, so a
    crash leaves either the old or the new file, never a truncated one.
    """
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(content)
            if fsync:
                fh.flush()
                os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


def normalize_file_path(path: str) -> str:
    """Normalize a logical content path for stable grouping."""
    normalized = os.path.normpath(path.strip().replace("\\", "/")).replace("\\", "/")
    return "" if normalized == "." else normalized


class DBMixinProtocol(Protocol):
    """Shared attributes and methods that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.store,
    self.get_issue(), etc. Actual implementations are provided by VellumDB
    at composition time.
    """

    store: IssueStore

    def get_issue(self, issue_id: str) -> Issue: ...
