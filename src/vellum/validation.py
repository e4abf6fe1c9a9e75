"""Boundary checks shared by the CLI, MCP server and core.

Pure functions with no MCP, FastAPI or click dependencies.
"""

from __future__ import annotations

import unicodedata
from typing import Any

MAX_IDENTITY_LENGTH = 128


def sanitize_identity(value: Any, *, field: str = "actor") -> tuple[str, str | None]:
    """Clean a person or agent name recorded in the audit trail.

    Returns ``(cleaned, None)`` or ``("", error)``. Control and format
    characters are rejected before stripping, so ``"\\nbad"`` fails instead of
    silently becoming ``"bad"``.
    """
    if not isinstance(value, str):
        return ("", f"{field} must be a string")
    bad = next((ch for ch in value if unicodedata.category(ch).startswith("C")), None)
    if bad is not None:
        return ("", f"{field} must not contain control characters (found U+{ord(bad):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", f"{field} must not be empty")
    if len(cleaned) > MAX_IDENTITY_LENGTH:
        return ("", f"{field} must be at most {MAX_IDENTITY_LENGTH} characters")
    return (cleaned, None)


def sanitize_actor(value: Any) -> tuple[str, str | None]:
    return sanitize_identity(value, field="actor")


def parse_csv(value: str | None) -> list[str]:
    """Split a comma-separated option into trimmed, non-empty items."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
