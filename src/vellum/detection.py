"""Rule-driven detection of sensitive content.

Rule tables are TOML, versioned, and loaded at runtime. Adding a new
sensitive-topic category means editing a table, never this module. The
packaged table lives in ``vellum/data/default_rules.toml``; a project can
supply its own as ``.vellum/rules.toml`` or via ``rules`` in config.json.

Table shape::

    version = 1

    [[rule]]
    name = "stipend-amount"
    kind = "match"                      # or "missing-disclaimer"
    patterns = ['\\$\\s?\\d[\\d,]*\\s+stipend']
    disclaimer = '...'                  # missing-disclaimer rules only
    issue_type = "unverified-funding-amount"
    severity = "high"
    content_warnings = ["funding-amounts"]
    blocks_deployment = true            # default true
    case_sensitive = false              # default false
    description = "..."
    required_actions = ["..."]

A ``match`` rule fires when any pattern matches. A ``missing-disclaimer``
rule fires when any pattern matches and its ``disclaimer`` pattern appears
nowhere in the content. Each rule yields at most one candidate per file, and
no two rules in a table may share an ``issue_type``.
"""

from __future__ import annotations

import logging
import re
import tomllib
from collections.abc import Sequence
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

from vellum.errors import ValidationError
from vellum.models import VALID_SEVERITIES, normalize_warnings

logger = logging.getLogger(__name__)

VALID_RULE_KINDS: tuple[str, ...] = ("match", "missing-disclaimer")
SUPPORTED_RULES_VERSION = 1
_SAFE_NAME_RE = re.compile(r"^[\w-]+$")
_SNIPPET_MAX = 80


@dataclass(frozen=True)
class Rule:
    """A named detection rule loaded from a rule table."""

    name: str
    kind: str
    patterns: tuple[re.Pattern[str], ...]
    issue_type: str
    severity: str
    content_warnings: tuple[str, ...] = ()
    description: str = ""
    required_actions: tuple[str, ...] = ()
    blocks_deployment: bool = True
    disclaimer: re.Pattern[str] | None = None

    def evaluate(self, content: str) -> tuple[int, str] | None:
        """Return (match_count, first_snippet) if the rule fires, else None."""
        count = 0
        first: re.Match[str] | None = None
        for pattern in self.patterns:
            for m in pattern.finditer(content):
                count += 1
                if first is None or m.start() < first.start():
                    first = m
        if first is None:
            return None
        if self.kind == "missing-disclaimer" and self.disclaimer is not None and self.disclaimer.search(content):
            return None
        return count, _snippet(first.group(0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "patterns": [p.pattern for p in self.patterns],
            "disclaimer": self.disclaimer.pattern if self.disclaimer is not None else None,
            "issue_type": self.issue_type,
            "severity": self.severity,
            "content_warnings": list(self.content_warnings),
            "blocks_deployment": self.blocks_deployment,
            "description": self.description,
            "required_actions": list(self.required_actions),
        }


@dataclass(frozen=True)
class RuleSet:
    version: int
    rules: tuple[Rule, ...] = ()
    source: str = ""

    def __len__(self) -> int:
        return len(self.rules)


@dataclass(frozen=True)
class CandidateIssue:
    """A finding proposed by the engine; the caller decides whether to record it."""

    rule_name: str
    file_path: str
    issue_type: str
    severity: str
    description: str
    content_warnings: tuple[str, ...] = ()
    required_actions: tuple[str, ...] = ()
    blocks_deployment: bool = True
    match_count: int = 1
    snippet: str = ""

    def summary(self) -> str:
        """Issue description including the evidence that triggered the rule."""
        plural = "match" if self.match_count == 1 else "matches"
        base = self.description or f"Rule {self.rule_name} matched"
        return f'{base} [{self.rule_name}: {self.match_count} {plural}, first: "{self.snippet}"]'

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_name": self.rule_name,
            "file_path": self.file_path,
            "issue_type": self.issue_type,
            "severity": self.severity,
            "description": self.description,
            "content_warnings": list(self.content_warnings),
            "required_actions": list(self.required_actions),
            "blocks_deployment": self.blocks_deployment,
            "match_count": self.match_count,
            "snippet": self.snippet,
        }


def _snippet(text: str) -> str:
    text = " ".join(text.split())
    if len(text) > _SNIPPET_MAX:
        text = text[: _SNIPPET_MAX - 3] + "..."
    return text


# ---------------------------------------------------------------------------
# Rule table parsing
# ---------------------------------------------------------------------------


def _compile(pattern: Any, *, rule: str, key: str, flags: int) -> re.Pattern[str]:
    if not isinstance(pattern, str) or not pattern:
        msg = f"Rule {rule!r}: {key} must be a non-empty string"
        raise ValidationError(msg)
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        msg = f"Rule {rule!r}: invalid regex in {key}: {exc}"
        raise ValidationError(msg) from exc


def _str_list(raw: dict[str, Any], key: str, *, rule: str) -> tuple[str, ...]:
    value = raw.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"Rule {rule!r}: {key} must be a list of strings"
        raise ValidationError(msg)
    return tuple(value)


def _parse_rule(raw: Any, index: int) -> Rule:
    if not isinstance(raw, dict):
        msg = f"Rule #{index + 1} must be a table"
        raise ValidationError(msg)
    name = raw.get("name")
    if not isinstance(name, str) or not _SAFE_NAME_RE.match(name):
        msg = f"Rule #{index + 1}: name must be a string of letters, digits, '_' or '-'"
        raise ValidationError(msg)

    kind = raw.get("kind", "match")
    if kind not in VALID_RULE_KINDS:
        msg = f"Rule {name!r}: unknown kind {kind!r}. Valid: {', '.join(VALID_RULE_KINDS)}"
        raise ValidationError(msg)
    severity = raw.get("severity")
    if severity not in VALID_SEVERITIES:
        msg = f"Rule {name!r}: severity must be one of {', '.join(VALID_SEVERITIES)}"
        raise ValidationError(msg)
    issue_type = raw.get("issue_type")
    if not isinstance(issue_type, str) or not issue_type.strip():
        msg = f"Rule {name!r}: issue_type must be a non-empty string"
        raise ValidationError(msg)
    for key in ("blocks_deployment", "case_sensitive"):
        if key in raw and not isinstance(raw[key], bool):
            msg = f"Rule {name!r}: {key} must be a boolean"
            raise ValidationError(msg)
    description = raw.get("description", "")
    if not isinstance(description, str):
        msg = f"Rule {name!r}: description must be a string"
        raise ValidationError(msg)

    flags = 0 if raw.get("case_sensitive", False) else re.IGNORECASE
    raw_patterns = raw.get("patterns")
    if not isinstance(raw_patterns, list) or not raw_patterns:
        msg = f"Rule {name!r}: patterns must be a non-empty list"
        raise ValidationError(msg)
    patterns = tuple(_compile(p, rule=name, key="patterns", flags=flags) for p in raw_patterns)

    disclaimer = None
    if kind == "missing-disclaimer":
        disclaimer = _compile(raw.get("disclaimer"), rule=name, key="disclaimer", flags=flags)
    elif "disclaimer" in raw:
        logger.warning("Rule %r: disclaimer is ignored for kind 'match'", name)

    return Rule(
        name=name,
        kind=kind,
        patterns=patterns,
        issue_type=issue_type.strip(),
        severity=severity,
        content_warnings=normalize_warnings(list(_str_list(raw, "content_warnings", rule=name))),
        description=description.strip(),
        required_actions=_str_list(raw, "required_actions", rule=name),
        blocks_deployment=raw.get("blocks_deployment", True),
        disclaimer=disclaimer,
    )


def parse_rules(text: str, *, source: str = "<string>") -> RuleSet:
    """Parse a TOML rule table. Raises ValidationError on any malformed rule."""
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid rule table {source}: {exc}"
        raise ValidationError(msg) from exc

    version = data.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        msg = f"Rule table {source} must declare an integer version >= 1"
        raise ValidationError(msg)
    if version > SUPPORTED_RULES_VERSION:
        msg = f"Rule table {source} has version {version}; this vellum supports up to {SUPPORTED_RULES_VERSION}"
        raise ValidationError(msg)

    raw_rules = data.get("rule", [])
    if not isinstance(raw_rules, list):
        msg = f"Rule table {source}: [[rule]] must be an array of tables"
        raise ValidationError(msg)
    rules = [_parse_rule(raw, i) for i, raw in enumerate(raw_rules)]
    seen: set[str] = set()
    for rule in rules:
        if rule.name in seen:
            msg = f"Rule table {source}: duplicate rule name {rule.name!r}"
            raise ValidationError(msg)
        seen.add(rule.name)
    # Scan dedup is keyed on (file_path, issue_type); a shared issue_type
    # would let one rule's open issue hide another rule's finding.
    owners: dict[str, str] = {}
    for rule in rules:
        if rule.issue_type in owners:
            msg = (
                f"Rule table {source}: rules {owners[rule.issue_type]!r} and {rule.name!r} "
                f"share issue_type {rule.issue_type!r}; each rule needs its own"
            )
            raise ValidationError(msg, hint="Give each rule a distinct issue_type, e.g. missing-<topic>-disclaimer.")
        owners[rule.issue_type] = rule.name
    return RuleSet(version=version, rules=tuple(rules), source=source)


def load_rules(path: Path | None = None) -> RuleSet:
    """Load a rule table from *path*, or the packaged defaults when None."""
    if path is None:
        text = resources.files("vellum.data").joinpath("default_rules.toml").read_text(encoding="utf-8")
        return parse_rules(text, source="default_rules.toml")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read rule table {path}: {exc}"
        raise ValidationError(msg) from exc
    return parse_rules(text, source=str(path))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class DetectionEngine:
    """Applies a rule set to content strings. Never touches the ledger."""

    ruleset: RuleSet
    _rules: tuple[Rule, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._rules = self.ruleset.rules

    @classmethod
    def from_rules(cls, rules: Sequence[Rule], *, version: int = SUPPORTED_RULES_VERSION) -> DetectionEngine:
        return cls(RuleSet(version=version, rules=tuple(rules)))

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def scan(self, content: str, file_path: str) -> list[CandidateIssue]:
        """Return one candidate per firing rule, in rule order."""
        if not content:
            return []
        candidates: list[CandidateIssue] = []
        for rule in self._rules:
            hit = rule.evaluate(content)
            if hit is None:
                continue
            count, snippet = hit
            candidates.append(
                CandidateIssue(
                    rule_name=rule.name,
                    file_path=file_path,
                    issue_type=rule.issue_type,
                    severity=rule.severity,
                    description=rule.description,
                    content_warnings=rule.content_warnings,
                    required_actions=rule.required_actions,
                    blocks_deployment=rule.blocks_deployment,
                    match_count=count,
                    snippet=snippet,
                )
            )
        if candidates:
            logger.debug("Detected %d candidate(s) in %s", len(candidates), file_path)
        return candidates
