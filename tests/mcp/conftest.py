"""Fixtures for MCP server tests."""

from __future__ import annotations

import json
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from tests._db_factory import make_db
from vellum.core import REPORT_FILENAME, VELLUM_DIR_NAME, VellumDB


def _parse(result: list[Any]) -> Any:
    """Extract text content from MCP response and parse as JSON if possible."""
    text = result[0].text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


@pytest.fixture
def mcp_db(tmp_path: Path) -> Generator[VellumDB, None, None]:
    """Set up a VellumDB and patch the MCP module globals."""
    d = make_db(tmp_path)
    vellum_dir = tmp_path / VELLUM_DIR_NAME
    (vellum_dir / REPORT_FILENAME).write_text("# test\n")

    import vellum.mcp_server as mcp_mod

    original_db = mcp_mod.db
    original_dir = mcp_mod._vellum_dir
    mcp_mod.db = d
    mcp_mod._vellum_dir = vellum_dir

    yield d

    mcp_mod.db = original_db
    mcp_mod._vellum_dir = original_dir
