"""Turns triggered rules into reports and restrict actions.

For each triggered rule, in trigger order:
1) If the rule reports, the target's aggregated report is filed once, listing
   every reporting rule in this pass.
2) If the rule restricts, the action is applied, citing the report when this
   rule's report was filed successfully; the cited report is then resolved.
3) Restrictions already covered by an equal or stronger action on the same
   target are recorded as no-ops; a report the rule filed is still cited
   and resolved.

Failures are captured into the per-rule outcome and never stop later rules.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from fedimod.core.config import Restrict
from fedimod.core.errors import ActionFailure, AlreadyApplied, CredentialError
from fedimod.core.models import AccountRef, NormalizedEvent, PostEvent
from fedimod.core.outcomes import (
    OutcomeStatus,
    ReportOutcome,
    RestrictOutcome,
    RuleOutcome,
    TriggerResult,
)
from fedimod.core.ports import ModerationApiPort
from fedimod.core.rules_engine import RuleMatch

LOGGER = logging.getLogger(__name__)

REPORT_HEADER = "Automod rules broken:"

T = TypeVar("T")

_HANDLED_FAILURES = (ActionFailure, CredentialError, asyncio.TimeoutError)


@dataclass
class _ReportBuilder:
    """Accumulates report metadata across every rule reporting one target."""

    rule_names: List[str] = field(default_factory=list)
    rule_ids: List[str] = field(default_factory=list)
    spam: bool = False
    forward: bool = False

    def add(self, match: RuleMatch) -> None:
        report = match.rule.report
        if match.rule_name not in self.rule_names:
            self.rule_names.append(match.rule_name)
        for rule_id in report.rule_ids:
            if rule_id not in self.rule_ids:
                self.rule_ids.append(rule_id)
        self.spam = self.spam or report.spam
        self.forward = self.forward or report.forward

    def comment(self) -> str:
        lines = [REPORT_HEADER]
        lines.extend(f"- {name}" for name in self.rule_names)
        return "\n".join(lines)


@dataclass
class _TargetState:
    report: Optional[ReportOutcome] = None
    strongest: Optional[Restrict] = None
    resolved: Set[str] = field(default_factory=set)


class ModerationOrchestrator:
    """Applies the effects of triggered rules through a moderation API client."""

    def __init__(self, api: ModerationApiPort, timeout: Optional[float] = None) -> None:
        self._api = api
        self._timeout = timeout

    async def _call(self, awaitable: Awaitable[T]) -> T:
        if self._timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, self._timeout)

    async def apply(self, bot_account, event: NormalizedEvent, triggered: Sequence[RuleMatch]) -> TriggerResult:
        """Drive reports and restrictions for one event's triggered rules."""

        target = event.target
        states: Dict[str, _TargetState] = {}
        outcomes: List[RuleOutcome] = []

        for match in triggered:
            state = states.setdefault(target.id, _TargetState())
            rule = match.rule

            report_outcome = None
            if rule.report is not None:
                if state.report is None:
                    reporting = [m for m in triggered if m.rule.report is not None]
                    state.report = await self._file_report(bot_account, event, target, reporting)
                report_outcome = state.report

            restrict_outcome = None
            if rule.restrict is not None:
                cites = None
                if report_outcome is not None and report_outcome.status is OutcomeStatus.APPLIED:
                    cites = report_outcome.report_id
                restrict_outcome = await self._restrict(bot_account, target, rule.restrict, cites, state)

            outcomes.append(
                RuleOutcome(
                    rule=rule,
                    reason=match.reason,
                    report=report_outcome,
                    restrict=restrict_outcome,
                )
            )

        return TriggerResult(
            domain=bot_account.domain,
            username=bot_account.username,
            event_id=event.id,
            target_id=target.id,
            outcomes=tuple(outcomes),
        )

    async def _file_report(
        self,
        bot_account,
        event: NormalizedEvent,
        target: AccountRef,
        reporting: Sequence[RuleMatch],
    ) -> ReportOutcome:
        builder = _ReportBuilder()
        for match in reporting:
            builder.add(match)
        status_ids = (event.id,) if isinstance(event, PostEvent) else ()
        rule_names = tuple(builder.rule_names)
        try:
            report_id = await self._call(
                self._api.create_report(
                    target,
                    builder.comment(),
                    tuple(builder.rule_ids),
                    builder.forward,
                    builder.spam,
                    status_ids,
                )
            )
        except _HANDLED_FAILURES as exc:
            error = _describe(exc)
            LOGGER.error(
                "%s@%s: Couldn't create report against %s: %s",
                bot_account.username,
                bot_account.domain,
                target.handle,
                error,
            )
            return ReportOutcome(status=OutcomeStatus.FAILED, rule_names=rule_names, error=error)

        LOGGER.info(
            "%s@%s: Filed report %s against %s (%s)",
            bot_account.username,
            bot_account.domain,
            report_id,
            target.handle,
            ", ".join(rule_names),
        )
        return ReportOutcome(status=OutcomeStatus.APPLIED, report_id=str(report_id), rule_names=rule_names)

    async def _restrict(
        self,
        bot_account,
        target: AccountRef,
        kind: Restrict,
        cites: Optional[str],
        state: _TargetState,
    ) -> RestrictOutcome:
        if state.strongest is not None and kind.severity <= state.strongest.severity:
            LOGGER.info(
                "%s@%s: %s on %s already covered by %s",
                bot_account.username,
                bot_account.domain,
                kind.value,
                target.handle,
                state.strongest.value,
            )
            # No remote call, but this rule's own report still gets cited and closed.
            resolved, error = await self._resolve_cited(bot_account, cites, state)
            return RestrictOutcome(
                kind=kind,
                status=OutcomeStatus.NOOP,
                cited_report_id=cites,
                resolved=resolved,
                error=error,
            )

        try:
            await self._call(self._api.apply_restriction(target, kind, cites))
            status = OutcomeStatus.APPLIED
        except AlreadyApplied:
            status = OutcomeStatus.NOOP
        except _HANDLED_FAILURES as exc:
            error = _describe(exc)
            LOGGER.error(
                "%s@%s: Couldn't %s %s: %s",
                bot_account.username,
                bot_account.domain,
                kind.value,
                target.handle,
                error,
            )
            return RestrictOutcome(kind=kind, status=OutcomeStatus.FAILED, cited_report_id=cites, error=error)

        if state.strongest is None or kind.severity > state.strongest.severity:
            state.strongest = kind
        LOGGER.info(
            "%s@%s: %s %s (%s)%s",
            bot_account.username,
            bot_account.domain,
            kind.value,
            target.handle,
            status.value,
            f" citing report {cites}" if cites else "",
        )

        resolved, error = await self._resolve_cited(bot_account, cites, state)
        return RestrictOutcome(kind=kind, status=status, cited_report_id=cites, resolved=resolved, error=error)

    async def _resolve_cited(
        self,
        bot_account,
        cites: Optional[str],
        state: _TargetState,
    ) -> Tuple[bool, Optional[str]]:
        """Resolve a cited report at most once per event; returns ``(resolved, error)``."""

        if cites is None:
            return False, None
        if cites in state.resolved:
            return True, None
        try:
            await self._call(self._api.resolve_report(cites))
        except _HANDLED_FAILURES as exc:
            error = _describe(exc)
            LOGGER.error(
                "%s@%s: Couldn't resolve report %s: %s",
                bot_account.username,
                bot_account.domain,
                cites,
                error,
            )
            return False, error
        state.resolved.add(cites)
        return True, None


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "timed out"
    return str(exc) or type(exc).__name__
