"""Unit tests for shared input validation helpers."""

from __future__ import annotations

import pytest

from vellum.validation import parse_csv, sanitize_actor, sanitize_identity


class TestSanitizeActor:
    def test_strips_whitespace(self) -> None:
        assert sanitize_actor("  editor  ") == ("editor", None)

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_rejects_empty_or_non_string(self, value: object) -> None:
        cleaned, err = sanitize_actor(value)
        assert cleaned == ""
        assert err is not None

    @pytest.mark.parametrize("value", ["bad\nactor", "tab\there", "zero\u200bwidth"])
    def test_rejects_control_and_format_chars(self, value: str) -> None:
        _, err = sanitize_actor(value)
        assert err is not None
        assert "control" in err

    def test_rejects_overlong(self) -> None:
        _, err = sanitize_actor("x" * 129)
        assert err is not None

    def test_accepts_unicode_names(self) -> None:
        assert sanitize_actor("José Núñez") == ("José Núñez", None)

    def test_error_names_the_field(self) -> None:
        _, err = sanitize_identity("  ", field="resolved_by")
        assert err == "resolved_by must not be empty"


class TestParseCsv:
    def test_splits_and_trims(self) -> None:
        assert parse_csv(" legal, immigration ,,") == ["legal", "immigration"]

    @pytest.mark.parametrize("value", [None, "", " , "])
    def test_empty(self, value: str | None) -> None:
        assert parse_csv(value) == []
