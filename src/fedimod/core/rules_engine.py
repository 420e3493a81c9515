"""Rule compilation and matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Set, Tuple

from fedimod.core.config import ReportSpec, Restrict
from fedimod.core.errors import ConfigError
from fedimod.core.models import NormalizedEvent
from fedimod.core.patterns import ClassifierPattern, Context, Pattern, build_pattern, matches


@dataclass(frozen=True)
class Rule:
    """Compiled rule used by the pipeline.

    Patterns are OR-combined: the rule triggers when any one of them matches.
    """

    name: str
    patterns: Tuple[Pattern, ...]
    report: Optional[ReportSpec] = None
    restrict: Optional[Restrict] = None


@dataclass(frozen=True)
class RuleMatch:
    """A single triggered rule with a human-readable reason."""

    rule: Rule
    reason: str

    @property
    def rule_name(self) -> str:
        return self.rule.name


def _build_report(raw: Any, location: str) -> ReportSpec:
    if not isinstance(raw, Mapping):
        raise ConfigError("report must be an object", location)
    unknown = sorted(set(raw) - {"forward", "rule_ids", "spam"})
    if unknown:
        raise ConfigError(f"unknown key(s): {', '.join(unknown)}", location)
    rule_ids = raw.get("rule_ids", []) or []
    if not isinstance(rule_ids, list):
        raise ConfigError("rule_ids must be a list", location)
    return ReportSpec(
        forward=bool(raw.get("forward", False)),
        rule_ids=tuple(str(rule_id) for rule_id in rule_ids),
        spam=bool(raw.get("spam", False)),
    )


def _build_restrict(raw: Any, location: str) -> Restrict:
    try:
        return Restrict(raw)
    except ValueError as exc:
        choices = ", ".join(kind.value for kind in Restrict)
        raise ConfigError(f"unknown restrict action {raw!r} (expected one of: {choices})", location) from exc


def build_rule(raw: Any, location: str) -> Rule:
    """Validate one rule config entry and compile its patterns."""

    if not isinstance(raw, Mapping):
        raise ConfigError("rule must be an object", location)
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("rule needs a non-empty name", f"{location}.name")
    location = f"{location}[{name}]"

    unknown = sorted(set(raw) - {"name", "patterns", "report", "restrict", "enabled"})
    if unknown:
        raise ConfigError(f"unknown key(s): {', '.join(unknown)}", location)

    report = _build_report(raw["report"], f"{location}.report") if raw.get("report") is not None else None
    restrict = _build_restrict(raw["restrict"], f"{location}.restrict") if raw.get("restrict") is not None else None
    if report is None and restrict is None:
        raise ConfigError("rule has neither report nor restrict and can never take effect", location)

    raw_patterns = raw.get("patterns", [])
    if not isinstance(raw_patterns, list):
        raise ConfigError("patterns must be a list", f"{location}.patterns")
    patterns = tuple(
        build_pattern(pattern, f"{location}.patterns[{index}]")
        for index, pattern in enumerate(raw_patterns)
    )
    return Rule(name=name, patterns=patterns, report=report, restrict=restrict)


def build_rules(rules_config: Iterable[Any], location: str = "rules") -> List[Rule]:
    """Normalize rule configs and compile patterns.

    Disabled rules are dropped here so evaluation never has to look at them.
    Any invalid entry aborts the whole load with a ``ConfigError``.
    """

    compiled: List[Rule] = []
    names: Set[str] = set()
    for index, rule in enumerate(rules_config):
        if isinstance(rule, Mapping) and not rule.get("enabled", True):
            continue
        built = build_rule(rule, f"{location}[{index}]")
        if built.name in names:
            raise ConfigError(f"duplicate rule name {built.name!r}", f"{location}[{index}]")
        names.add(built.name)
        compiled.append(built)
    return compiled


def classifier_contexts(rules: Iterable[Rule]) -> Set[Context]:
    """Contexts for which at least one rule wants a classifier score."""

    return {
        pattern.context
        for rule in rules
        for pattern in rule.patterns
        if isinstance(pattern, ClassifierPattern)
    }


def match_rules(
    event: NormalizedEvent,
    rules: Iterable[Rule],
    scores: Optional[Mapping[Context, float]] = None,
) -> List[RuleMatch]:
    """Return triggered rules in configured order.

    Matching logic:
    - A rule triggers when any of its patterns matches; a rule without
      patterns never triggers.
    - The reason names the first pattern that matched.
    """

    triggered: List[RuleMatch] = []
    for rule in rules:
        for pattern in rule.patterns:
            if matches(pattern, event, scores):
                triggered.append(RuleMatch(rule=rule, reason=pattern.describe()))
                break
    return triggered


def evaluate(bot_account, event: NormalizedEvent, scores: Optional[Mapping[Context, float]] = None) -> List[RuleMatch]:
    """Evaluate a bot account's rules against one event."""

    return match_rules(event, bot_account.rules, scores)
