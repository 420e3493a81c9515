"""Audit records produced by one evaluation pass over one event."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from fedimod.core.config import Restrict
from fedimod.core.rules_engine import Rule


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    FAILED = "failed"


@dataclass(frozen=True)
class ReportOutcome:
    """Result of filing the (possibly aggregated) report for a target account."""

    status: OutcomeStatus
    report_id: Optional[str] = None
    rule_names: Tuple[str, ...] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class RestrictOutcome:
    """Result of one restrict action; ``cited_report_id`` links it to its report."""

    kind: Restrict
    status: OutcomeStatus
    cited_report_id: Optional[str] = None
    resolved: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class RuleOutcome:
    rule: Rule
    reason: str
    report: Optional[ReportOutcome] = None
    restrict: Optional[RestrictOutcome] = None

    @property
    def failed(self) -> bool:
        return any(
            outcome is not None and outcome.status is OutcomeStatus.FAILED
            for outcome in (self.report, self.restrict)
        )


@dataclass(frozen=True)
class TriggerResult:
    """Ordered per-rule outcomes for one event and one bot account."""

    domain: str
    username: str
    event_id: str
    target_id: str
    outcomes: Tuple[RuleOutcome, ...] = ()

    @property
    def triggered(self) -> bool:
        return bool(self.outcomes)

    @property
    def failures(self) -> Tuple[RuleOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.failed)
