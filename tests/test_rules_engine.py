from __future__ import annotations

import pytest

from fakes import make_bot, make_post
from fedimod.core.config import ReportSpec, Restrict
from fedimod.core.errors import ConfigError
from fedimod.core.patterns import Context
from fedimod.core.rules_engine import build_rules, classifier_contexts, evaluate, match_rules


def test_build_rules_compiles_effects() -> None:
    rules = build_rules(
        [
            {
                "name": "casino",
                "report": {"rule_ids": ["8"], "spam": True, "forward": True},
                "restrict": "suspend",
                "patterns": [{"word": "casino"}],
            }
        ]
    )

    assert rules[0].report == ReportSpec(forward=True, rule_ids=("8",), spam=True)
    assert rules[0].restrict is Restrict.SUSPEND


def test_inert_rule_is_rejected_with_location() -> None:
    with pytest.raises(ConfigError) as excinfo:
        build_rules([{"name": "does nothing", "patterns": [{"word": "x"}]}])

    assert "rules[0][does nothing]" in str(excinfo.value)
    assert "neither report nor restrict" in str(excinfo.value)


@pytest.mark.parametrize(
    "raw, fragment",
    [
        ({"name": "", "report": {}}, "non-empty name"),
        ({"name": "r", "restrict": "ban"}, "unknown restrict action"),
        ({"name": "r", "report": {"rule_ids": "8"}}, "rule_ids must be a list"),
        ({"name": "r", "report": {"categroy": "spam"}}, "unknown key"),
        ({"name": "r", "report": {}, "patterns": {"word": "x"}}, "patterns must be a list"),
        ({"name": "r", "report": {}, "pattern": []}, "unknown key"),
    ],
)
def test_rule_validation_errors(raw: dict, fragment: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        build_rules([raw])

    assert fragment in str(excinfo.value)


def test_duplicate_rule_names_are_rejected() -> None:
    with pytest.raises(ConfigError):
        build_rules([{"name": "a", "report": {}}, {"name": "a", "restrict": "silence"}])


def test_disabled_rules_are_skipped() -> None:
    rules = build_rules(
        [
            {"name": "off", "enabled": False, "report": {}},
            {"name": "on", "report": {}, "patterns": [{"word": "x"}]},
        ]
    )

    assert [rule.name for rule in rules] == ["on"]


def test_rule_without_patterns_never_triggers() -> None:
    bot = make_bot([{"name": "empty", "report": {}, "patterns": []}])

    assert evaluate(bot, make_post("anything at all")) == []


def test_patterns_are_or_combined() -> None:
    bot = make_bot(
        [
            {
                "name": "either",
                "report": {},
                "patterns": [{"word": "casino"}, {"word": "pills"}],
            }
        ]
    )

    assert len(evaluate(bot, make_post("cheap pills"))) == 1
    assert len(evaluate(bot, make_post("casino night"))) == 1
    assert evaluate(bot, make_post("nothing to see")) == []


def test_triggered_rules_keep_configured_order() -> None:
    bot = make_bot(
        [
            {"name": "third-word", "report": {}, "patterns": [{"word": "gamma"}]},
            {"name": "no-match", "report": {}, "patterns": [{"word": "delta"}]},
            {"name": "first-word", "restrict": "silence", "patterns": [{"word": "alpha"}]},
            {"name": "second-word", "report": {}, "patterns": [{"word": "beta"}]},
        ]
    )

    matches = evaluate(bot, make_post("alpha beta gamma"))

    assert [match.rule_name for match in matches] == ["third-word", "first-word", "second-word"]
    assert matches[0].reason == "word 'gamma' in post_text"


def test_evaluation_is_deterministic() -> None:
    bot = make_bot(
        [
            {"name": "a", "report": {}, "patterns": [{"regex": "sp[a@]m"}]},
            {"name": "b", "restrict": "silence", "patterns": [{"link_domain": "spam.test"}]},
        ]
    )
    post = make_post("sp@m at https://spam.test/", urls=("https://spam.test/",))

    first = evaluate(bot, post)
    for _ in range(5):
        assert evaluate(bot, post) == first
    assert match_rules(post, bot.rules) == first


def test_classifier_contexts_are_collected() -> None:
    rules = build_rules(
        [
            {"name": "a", "report": {}, "patterns": [{"classifier": {"min_score": 5}}]},
            {"name": "b", "report": {}, "patterns": [{"classifier": {"min_score": 5}, "context": "bio"}]},
            {"name": "c", "report": {}, "patterns": [{"word": "x"}]},
        ]
    )

    assert classifier_contexts(rules) == {Context.POST_TEXT, Context.BIO}
