from __future__ import annotations

import asyncio
import logging

from fakes import DOMAIN, FakeApi, FakeAudit, make_author, make_bot, make_post
from fedimod.core.outcomes import OutcomeStatus
from fedimod.core.patterns import Context
from fedimod.core.processor import EventProcessor, summarize


class FakeClassifier:
    def __init__(self, score: float = 0.0, fail: bool = False) -> None:
        self.score = score
        self.fail = fail
        self.texts: list[str] = []
        self.events: list = []

    async def classify(self, text: str, event=None) -> float:
        self.texts.append(text)
        self.events.append(event)
        if self.fail:
            raise ConnectionError("classifier down")
        return self.score


CASINO_RULES = [
    {"name": "casino", "report": {"rule_ids": ["8"]}, "restrict": "suspend", "patterns": [{"word": "casino"}]},
]


def test_handle_runs_pipeline_and_records_audit() -> None:
    api = FakeApi()
    audit = FakeAudit()
    processor = EventProcessor(lambda bot: api, audit=audit)
    bot = make_bot(CASINO_RULES)

    result = asyncio.run(processor.handle(bot, make_post("casino")))

    assert result.triggered
    assert result.domain == DOMAIN
    assert result.username == "automod"
    assert result.event_id == "109"
    assert result.target_id == "42"
    assert audit.results == [result]
    assert summarize(result) == "casino report=applied suspend=applied@101"


def test_untriggered_event_is_not_audited() -> None:
    api = FakeApi()
    audit = FakeAudit()
    processor = EventProcessor(lambda bot: api, audit=audit)

    result = asyncio.run(processor.handle(make_bot(CASINO_RULES), make_post("hello")))

    assert not result.triggered
    assert api.calls == []
    assert audit.results == []
    assert summarize(result) == "no rules triggered"


def test_bot_own_posts_are_skipped() -> None:
    api = FakeApi()
    processor = EventProcessor(lambda bot: api)
    own = make_author(username="automod", domain=DOMAIN, local=True)

    result = asyncio.run(processor.handle(make_bot(CASINO_RULES), make_post("casino", author=own)))

    assert not result.triggered
    assert api.calls == []


def test_classifier_scores_feed_classifier_patterns() -> None:
    api = FakeApi()
    classifier = FakeClassifier(score=12.5)
    processor = EventProcessor(lambda bot: api, classifier=classifier)
    bot = make_bot(
        [{"name": "spammy", "report": {"spam": True}, "patterns": [{"classifier": {"min_score": 10}}]}]
    )

    post = make_post("buy now")

    result = asyncio.run(processor.handle(bot, post))

    assert classifier.texts == ["buy now"]
    assert classifier.events == [post]
    assert result.outcomes[0].reason == "classifier score >= 10 for post_text"
    assert api.reports[0]["spam"] is True


def test_classifier_is_not_called_without_classifier_rules() -> None:
    classifier = FakeClassifier(score=100)
    processor = EventProcessor(lambda bot: FakeApi(), classifier=classifier)

    asyncio.run(processor.handle(make_bot(CASINO_RULES), make_post("casino")))

    assert classifier.texts == []


def test_classifier_failure_only_disables_classifier_patterns(caplog) -> None:
    api = FakeApi()
    processor = EventProcessor(lambda bot: api, classifier=FakeClassifier(fail=True))
    bot = make_bot(
        [
            {"name": "spammy", "report": {}, "patterns": [{"classifier": {"min_score": 1}}]},
            {"name": "casino", "restrict": "silence", "patterns": [{"word": "casino"}]},
        ]
    )

    with caplog.at_level(logging.WARNING, logger="fedimod.core.processor"):
        result = asyncio.run(processor.handle(bot, make_post("casino")))

    assert [outcome.rule.name for outcome in result.outcomes] == ["casino"]
    assert result.outcomes[0].restrict.status is OutcomeStatus.APPLIED
    assert "Classifier failed" in caplog.text


def test_failures_are_logged_per_rule(caplog) -> None:
    api = FakeApi(fail_reports=True)
    processor = EventProcessor(lambda bot: api)

    with caplog.at_level(logging.ERROR):
        result = asyncio.run(processor.handle(make_bot(CASINO_RULES), make_post("casino")))

    assert len(result.failures) == 1
    assert "Rule casino failed on 109" in caplog.text


def test_scores_are_computed_per_context() -> None:
    classifier = FakeClassifier(score=3)
    processor = EventProcessor(lambda bot: FakeApi(), classifier=classifier)
    bot = make_bot(
        [
            {
                "name": "bio",
                "report": {},
                "patterns": [{"classifier": {"min_score": 5}, "context": "bio"}],
            }
        ]
    )

    scores = asyncio.run(processor._scores(bot, make_post("post body")))

    assert scores == {Context.BIO: 3}
    assert classifier.texts == ["I post links"]
