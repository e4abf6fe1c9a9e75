"""Shared pytest fixtures for vellum tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from tests._db_factory import make_db
from vellum.core import REPORT_FILENAME, VELLUM_DIR_NAME, VellumDB


@pytest.fixture
def db(tmp_path: Path) -> VellumDB:
    """Fresh VellumDB (prefix SC) for each test."""
    return make_db(tmp_path)


@pytest.fixture
def populated_db(db: VellumDB) -> VellumDB:
    """VellumDB pre-populated with a representative issue set.

    Creates:
    - SC-001 funding page, high, blocking, pending
    - SC-002 ranking claim, low, non-blocking, pending
    - SC-003 visa page, blocker, blocking, resolved in abc123
    - SC-004 AI policy page, medium, blocking, deferred
    """
    a = db.create_issue(
        "programs/funding.html",
        "unverified-funding-amount",
        "high",
        "Stipend figure is unverified",
        content_warnings=["funding-amounts"],
        required_actions=["Confirm with the department"],
        blocks_deployment=True,
    )
    b = db.create_issue("programs/rankings.html", "unsourced-ranking-claim", "low", "Ranking has no source")
    c = db.create_issue(
        "guides/visa.html",
        "missing-disclaimer",
        "blocker",
        "Visa guidance without legal disclaimer",
        content_warnings=["immigration", "legal"],
        blocks_deployment=True,
    )
    db.resolve_issue(c.id, assigned_commit="abc123", resolved_by="editor")
    d = db.create_issue(
        "guides/ai.html",
        "missing-disclaimer",
        "medium",
        "AI guidance without policy note",
        content_warnings=["ai-policy"],
        blocks_deployment=True,
    )
    db.defer_issue(d.id, justification="Waiting on the university's AI policy update")
    db._test_ids: dict[str, str] = {"a": a.id, "b": b.id, "c": c.id, "d": d.id}  # type: ignore[attr-defined]
    return db


@pytest.fixture
def vellum_project(tmp_path: Path) -> Path:
    """A tmp directory set up as a vellum project (.vellum/ with config + ledger).

    Returns the project root (parent of .vellum/).
    """
    make_db(tmp_path)
    (tmp_path / VELLUM_DIR_NAME / REPORT_FILENAME).write_text("# report\n")
    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
