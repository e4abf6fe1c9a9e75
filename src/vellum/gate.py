"""Compliance gate: decides whether content may be deployed.

An issue blocks deployment while ``blocks_deployment`` is set and its status
is anything other than ``resolved``. Deferral acknowledges an issue but never
waives its block.

Verdicts:
    pass: nothing blocking
    warn: blocking issues exist, non-strict (advisory, exit 0)
    fail: blocking issues exist in strict mode, or the ledger could not be
          read at all (fail-closed in either mode)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from vellum.db_base import _now_iso
from vellum.models import SEVERITY_RANK, Issue
from vellum.types.core import GateResultDict, ISOTimestamp

if TYPE_CHECKING:
    from vellum.core import VellumDB

logger = logging.getLogger(__name__)

Verdict = Literal["pass", "warn", "fail"]


@dataclass(frozen=True)
class GateResult:
    verdict: Verdict
    strict: bool
    blocking: tuple[Issue, ...] = ()
    checked_at: str = field(default_factory=_now_iso)
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.verdict != "fail"

    @property
    def exit_code(self) -> int:
        return 1 if self.verdict == "fail" else 0

    def to_dict(self) -> GateResultDict:
        return GateResultDict(
            verdict=self.verdict,
            strict=self.strict,
            passed=self.passed,
            exit_code=self.exit_code,
            blocking_count=len(self.blocking),
            blocking=[i.to_dict() for i in self.blocking],
            checked_at=ISOTimestamp(self.checked_at),
            error=self.error,
        )


def blocking_issues(issues: list[Issue] | tuple[Issue, ...]) -> list[Issue]:
    """Unresolved, deployment-blocking issues, most urgent first (stable within a tier)."""
    found = [i for i in issues if i.is_blocking]
    return sorted(found, key=lambda i: SEVERITY_RANK[i.severity])


def evaluate(db: VellumDB, *, strict: bool = False) -> GateResult:
    """Evaluate the gate against the current ledger. Store errors propagate."""
    blocking = tuple(blocking_issues(tuple(db.list_all())))
    verdict: Verdict
    if not blocking:
        verdict = "pass"
    elif strict:
        verdict = "fail"
    else:
        verdict = "warn"
    result = GateResult(verdict=verdict, strict=strict, blocking=blocking)
    logger.info(
        "gate_evaluated",
        extra={"args_data": {"strict": strict, "verdict": verdict, "blocking": [i.id for i in blocking]}},
    )
    return result


def evaluate_safely(db: VellumDB, *, strict: bool = False) -> GateResult:
    """Like :func:`evaluate`, but any failure becomes a ``fail`` verdict.

    A gate that cannot read the ledger must never report "safe to deploy".
    """
    try:
        return evaluate(db, strict=strict)
    except Exception as exc:
        logger.error("gate_error", extra={"error": f"{type(exc).__name__}: {exc}"}, exc_info=True)
        return GateResult(verdict="fail", strict=strict, error=f"{type(exc).__name__}: {exc}")
