"""Shared CLI helpers.

Provides ``get_db()``, ``refresh_report()`` and ``fail()`` so that ``cli.py``
and the ``cli_commands/*.py`` modules can use them without circular imports.
"""

from __future__ import annotations

import json as json_mod
import logging
import sys
from typing import NoReturn

import click

from vellum.core import REPORT_FILENAME, VELLUM_DIR_NAME, VellumDB, find_vellum_root
from vellum.errors import VellumError
from vellum.logging import setup_logging
from vellum.reporting import write_report

logger = logging.getLogger(__name__)


def get_db() -> VellumDB:
    """Discover .vellum/ and return an initialized VellumDB."""
    try:
        vellum_dir = find_vellum_root()
    except FileNotFoundError:
        click.echo(f"No {VELLUM_DIR_NAME}/ found. Run 'vellum init' first.", err=True)
        sys.exit(1)
    setup_logging(vellum_dir)
    return VellumDB.from_vellum_dir(vellum_dir)


def refresh_report(db: VellumDB) -> None:
    """Regenerate report.md after mutations (best-effort, never fatal).

    The mutation is already committed to the ledger by the time this runs, so
    a failed write is logged and the command still succeeds.
    """
    try:
        write_report(db, db.vellum_dir / REPORT_FILENAME)
    except (OSError, VellumError):
        logger.warning("Failed to write report.md", exc_info=True)


def fail(exc: VellumError, *, as_json: bool = False) -> NoReturn:
    """Print a typed error (kind + hint, or a JSON object) and exit 1."""
    if as_json:
        click.echo(json_mod.dumps({"error": str(exc), "code": exc.code, "hint": exc.hint}))
    else:
        click.echo(f"Error [{exc.kind}]: {exc}", err=True)
        if exc.hint:
            click.echo(f"Hint: {exc.hint}", err=True)
    sys.exit(1)
