"""Core event processing pipeline.

This module is integration-agnostic. It only relies on ports for the remote
API, the optional classifier and the audit sink, in a strict order:
1) Skip the bot's own posts
2) Score classifier contexts, if any rule asks for them
3) Evaluate rules (pure, in configured order)
4) Orchestrate reports and restrictions
5) Hand the TriggerResult to the audit sink
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Optional

from fedimod.core.models import NormalizedEvent, PostEvent
from fedimod.core.orchestrator import ModerationOrchestrator
from fedimod.core.outcomes import OutcomeStatus, TriggerResult
from fedimod.core.patterns import Context, field_values
from fedimod.core.ports import AuditPort, ClassifierPort, ModerationApiPort
from fedimod.core.registry import BotAccount
from fedimod.core.rules_engine import classifier_contexts, evaluate

LOGGER = logging.getLogger(__name__)

ApiFactory = Callable[[BotAccount], ModerationApiPort]


class EventProcessor:
    """Orchestrates classification, matching, moderation and auditing."""

    def __init__(
        self,
        api_factory: ApiFactory,
        audit: Optional[AuditPort] = None,
        classifier: Optional[ClassifierPort] = None,
        api_timeout: Optional[float] = None,
        classifier_timeout: Optional[float] = None,
    ) -> None:
        self._api_factory = api_factory
        self._audit = audit
        self._classifier = classifier
        self._api_timeout = api_timeout
        self._classifier_timeout = classifier_timeout

    async def _scores(self, bot: BotAccount, event: NormalizedEvent) -> Dict[Context, float]:
        if self._classifier is None:
            return {}
        scores: Dict[Context, float] = {}
        for context in sorted(classifier_contexts(bot.rules), key=lambda c: c.value):
            text = " ".join(value for value in field_values(event, context) if value)
            if not text.strip():
                continue
            try:
                scores[context] = await asyncio.wait_for(
                    self._classifier.classify(text, event),
                    self._classifier_timeout,
                )
            except Exception:
                # An unavailable classifier only disables classifier patterns.
                LOGGER.warning(
                    "%s@%s: Classifier failed for %s of %s",
                    bot.username,
                    bot.domain,
                    context.value,
                    event.id,
                    exc_info=True,
                )
        return scores

    async def handle(self, bot: BotAccount, event: NormalizedEvent) -> TriggerResult:
        """Process one normalized event for one bot account."""

        target = event.target
        empty = TriggerResult(
            domain=bot.domain,
            username=bot.username,
            event_id=event.id,
            target_id=target.id,
        )

        # Never act on the bot's own posts, e.g. notes it writes to itself.
        if isinstance(event, PostEvent) and target.local and target.username.lower() == bot.username.lower():
            return empty

        scores = await self._scores(bot, event)
        matches = evaluate(bot, event, scores)
        if not matches:
            return empty

        LOGGER.info(
            "%s@%s: %s triggered %s",
            bot.username,
            bot.domain,
            event.id,
            ", ".join(match.rule_name for match in matches),
        )
        orchestrator = ModerationOrchestrator(self._api_factory(bot), timeout=self._api_timeout)
        result = await orchestrator.apply(bot, event, matches)

        LOGGER.info("%s@%s: %s -> %s", bot.username, bot.domain, event.id, summarize(result))
        for failure in result.failures:
            LOGGER.error("%s@%s: Rule %s failed on %s", bot.username, bot.domain, failure.rule.name, event.id)
        if self._audit is not None:
            self._audit.record(result)
        return result


def summarize(result: TriggerResult) -> str:
    """One-line summary of a trigger result for the logs."""

    parts = []
    for outcome in result.outcomes:
        bits = [outcome.rule.name]
        if outcome.report is not None:
            bits.append(f"report={outcome.report.status.value}")
        if outcome.restrict is not None:
            restrict = outcome.restrict
            label = f"{restrict.kind.value}={restrict.status.value}"
            if restrict.status is not OutcomeStatus.FAILED and restrict.cited_report_id:
                label += f"@{restrict.cited_report_id}"
            bits.append(label)
        parts.append(" ".join(bits))
    return "; ".join(parts) or "no rules triggered"
