# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# Importing core.py, store.py or a mixin from here creates an import cycle.
"""Typed return-value contracts for vellum core and API layers."""

from __future__ import annotations

from vellum.types.core import (
    GateResultDict,
    ISOTimestamp,
    IssueDict,
    NoteDict,
    ProjectConfig,
    ReportData,
)

__all__ = [
    "GateResultDict",
    "ISOTimestamp",
    "IssueDict",
    "NoteDict",
    "ProjectConfig",
    "ReportData",
]
