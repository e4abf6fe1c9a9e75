"""Core operations for the compliance issue ledger.

Single source of truth for issue creation, lookup and status changes. The CLI,
MCP server and HTTP API all import from this module. No daemon, no database
server; only the JSON Lines ledger with file locking.

Convention-based discovery: each project has a `.vellum/` directory containing
`issues.jsonl` (the ledger), `config.json` (id prefix, lock timeout, rule
table) and optionally `rules.toml`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from vellum.db_base import _now_iso, normalize_file_path, write_atomic
from vellum.db_lifecycle import LifecycleMixin
from vellum.errors import ValidationError
from vellum.models import Issue, Note, as_severity, normalize_warnings
from vellum.store import DEFAULT_LOCK_TIMEOUT, IssueStore, LedgerView
from vellum.types.core import ProjectConfig

if TYPE_CHECKING:
    from vellum.detection import CandidateIssue

logger = logging.getLogger(__name__)

__all__ = [
    "CONFIG_FILENAME",
    "LEDGER_FILENAME",
    "REPORT_FILENAME",
    "RULES_FILENAME",
    "VELLUM_DIR_NAME",
    "Issue",
    "Note",
    "VellumDB",
    "find_vellum_root",
    "read_config",
    "write_config",
]

# ---------------------------------------------------------------------------
# Convention-based discovery
# ---------------------------------------------------------------------------

VELLUM_DIR_NAME = ".vellum"
LEDGER_FILENAME = "issues.jsonl"
CONFIG_FILENAME = "config.json"
REPORT_FILENAME = "report.md"
RULES_FILENAME = "rules.toml"
DEFAULT_PREFIX = "SC"


def find_vellum_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .vellum/ directory.

    Returns the .vellum/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / VELLUM_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {VELLUM_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def read_config(vellum_dir: Path) -> ProjectConfig:
    """Read .vellum/config.json. Returns defaults if missing or corrupt."""
    defaults = ProjectConfig(prefix=DEFAULT_PREFIX, version=1, lock_timeout=DEFAULT_LOCK_TIMEOUT)
    config_path = vellum_dir / CONFIG_FILENAME
    if not config_path.exists():
        return defaults
    try:
        data = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return defaults
    if not isinstance(data, dict):
        logger.warning("Config %s is not a JSON object, using defaults", config_path)
        return defaults
    result: ProjectConfig = {**defaults, **data}  # type: ignore[typeddict-item]
    return result


def write_config(vellum_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .vellum/config.json."""
    write_atomic(vellum_dir / CONFIG_FILENAME, json.dumps(config, indent=2) + "\n")


def rules_path_for(vellum_dir: Path, config: ProjectConfig | None = None) -> Path | None:
    """Resolve the project's rule table, or None to use the packaged defaults."""
    config = config if config is not None else read_config(vellum_dir)
    configured = config.get("rules")
    if configured:
        return (vellum_dir / configured).resolve()
    local = vellum_dir / RULES_FILENAME
    return local if local.is_file() else None


# ---------------------------------------------------------------------------
# VellumDB
# ---------------------------------------------------------------------------


class VellumDB(LifecycleMixin):
    """Ledger-backed issue operations. Importable by CLI, MCP and HTTP layers."""

    def __init__(
        self,
        ledger_path: str | Path,
        *,
        prefix: str = DEFAULT_PREFIX,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self.ledger_path = Path(ledger_path)
        self.prefix = prefix
        self.store = IssueStore(self.ledger_path, lock_timeout=lock_timeout)

    @classmethod
    def from_project(cls, project_path: Path | None = None) -> VellumDB:
        """Create a VellumDB by discovering .vellum/ from project_path (or cwd)."""
        vellum_dir = find_vellum_root(project_path)
        return cls.from_vellum_dir(vellum_dir)

    @classmethod
    def from_vellum_dir(cls, vellum_dir: Path) -> VellumDB:
        config = read_config(vellum_dir)
        db = cls(
            vellum_dir / LEDGER_FILENAME,
            prefix=config.get("prefix", DEFAULT_PREFIX),
            lock_timeout=float(config.get("lock_timeout", DEFAULT_LOCK_TIMEOUT)),
        )
        db.initialize()
        return db

    def __enter__(self) -> VellumDB:
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    @property
    def vellum_dir(self) -> Path:
        return self.ledger_path.parent

    def initialize(self) -> None:
        """Create the ledger file if this is a fresh project."""
        self.store.initialize()

    # -- Issue creation --------------------------------------------------------

    def create_issue(
        self,
        file_path: str,
        issue_type: str,
        severity: str,
        description: str,
        *,
        required_actions: Iterable[str] | None = None,
        content_warnings: Iterable[str] | None = None,
        blocks_deployment: bool = False,
        issue_id: str | None = None,
        actor: str = "",
    ) -> Issue:
        """Record a new pending issue.

        Without *issue_id* the next ``<prefix>-NNN`` id is allocated under the
        ledger lock. An explicit id that already exists raises DuplicateIdError.
        """
        path = normalize_file_path(file_path or "")
        if not path:
            msg = "file_path cannot be empty"
            raise ValidationError(msg)
        if not issue_type or not issue_type.strip():
            msg = "issue_type cannot be empty"
            raise ValidationError(msg)
        if not description or not description.strip():
            msg = "description cannot be empty"
            raise ValidationError(msg)
        as_severity(severity)
        actions = tuple(a.strip() for a in (required_actions or ()) if a and a.strip())
        warnings = normalize_warnings(list(content_warnings or ()))

        def build(new_id: str) -> Issue:
            return Issue(
                id=new_id,
                created_at=_now_iso(),
                status="pending",
                file_path=path,
                issue_type=issue_type.strip(),
                severity=severity,
                description=description.strip(),
                required_actions=actions,
                content_warnings=warnings,
                blocks_deployment=bool(blocks_deployment),
            )

        if issue_id is not None:
            issue_id = issue_id.strip()
            if not issue_id or any(ch.isspace() for ch in issue_id):
                msg = f"Invalid issue id: {issue_id!r}"
                raise ValidationError(msg)
            issue = self.store.append(build(issue_id))
        else:
            issue = self.store.append_next(build, prefix=self.prefix)

        logger.info(
            "issue_created",
            extra={
                "issue_id": issue.id,
                "args_data": {
                    "file_path": issue.file_path,
                    "issue_type": issue.issue_type,
                    "severity": issue.severity,
                    "blocks_deployment": issue.blocks_deployment,
                    "actor": actor,
                },
            },
        )
        return issue

    def submit_candidates(
        self,
        candidates: Iterable[CandidateIssue],
        *,
        actor: str = "",
    ) -> tuple[list[Issue], list[CandidateIssue]]:
        """Record detection candidates as issues.

        A candidate is skipped when an unresolved issue with the same
        ``file_path`` and ``issue_type`` already exists, so re-scanning the
        same content does not pile up duplicates. Rule tables give every rule
        its own ``issue_type``, so this is one open issue per rule per file.
        Returns (created, skipped).
        """
        open_keys = {(i.file_path, i.issue_type) for i in self.list_all() if i.status != "resolved"}
        created: list[Issue] = []
        skipped: list[CandidateIssue] = []
        for cand in candidates:
            key = (normalize_file_path(cand.file_path), cand.issue_type)
            if key in open_keys:
                skipped.append(cand)
                continue
            issue = self.create_issue(
                cand.file_path,
                cand.issue_type,
                cand.severity,
                cand.summary(),
                required_actions=cand.required_actions,
                content_warnings=cand.content_warnings,
                blocks_deployment=cand.blocks_deployment,
                actor=actor,
            )
            open_keys.add(key)
            created.append(issue)
        return created, skipped

    # -- Reads -----------------------------------------------------------------

    def get_issue(self, issue_id: str) -> Issue:
        return self.store.get(issue_id)

    def list_all(self) -> LedgerView:
        return self.store.list_all()
