"""Pattern types and matching (core domain).

A pattern is a closed set of dataclasses, each bound at load time to exactly
one content context. Matching is a pure function of the pattern, the event and
any classifier scores computed before evaluation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple, Union

from fedimod.core.errors import ConfigError
from fedimod.core.links import host_matches, url_host
from fedimod.core.models import AccountEvent, NormalizedEvent, PostEvent


class Context(str, Enum):
    """Which field of a normalized event a pattern tests."""

    POST_TEXT = "post_text"
    CONTENT_WARNING = "content_warning"
    USERNAME = "username"
    DISPLAY_NAME = "display_name"
    BIO = "bio"
    HASHTAG = "hashtag"
    MENTION = "mention"
    LINK = "link"


LINK_CONTEXTS = frozenset({Context.POST_TEXT, Context.CONTENT_WARNING, Context.BIO, Context.LINK})
CLASSIFIER_CONTEXTS = frozenset(
    {Context.POST_TEXT, Context.CONTENT_WARNING, Context.DISPLAY_NAME, Context.BIO}
)


@dataclass(frozen=True)
class WordPattern:
    """Case-insensitive word match; substring unless ``whole_word`` is set."""

    word: str
    context: Context = Context.POST_TEXT
    whole_word: bool = False
    _boundary: Optional[re.Pattern] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.whole_word and self._boundary is None:
            boundary = re.compile(rf"\b{re.escape(self.word)}\b", re.IGNORECASE)
            object.__setattr__(self, "_boundary", boundary)

    def test(self, value: str) -> bool:
        if self._boundary is not None:
            return self._boundary.search(value) is not None
        return self.word.casefold() in value.casefold()

    def describe(self) -> str:
        return f"word {self.word!r} in {self.context.value}"


@dataclass(frozen=True)
class RegexPattern:
    """Regular expression searched for anywhere in the context field."""

    expression: re.Pattern
    context: Context = Context.POST_TEXT

    def test(self, value: str) -> bool:
        return self.expression.search(value) is not None

    def describe(self) -> str:
        return f"regex {self.expression.pattern!r} in {self.context.value}"


@dataclass(frozen=True)
class LinkDomainPattern:
    """Matches when a link in the context field points at ``domain``."""

    domain: str
    context: Context = Context.POST_TEXT
    include_subdomains: bool = True

    def test(self, url: str) -> bool:
        return host_matches(url_host(url), self.domain, self.include_subdomains)

    def describe(self) -> str:
        return f"link to {self.domain} in {self.context.value}"


@dataclass(frozen=True)
class ClassifierPattern:
    """Matches when the classifier scored the context field at or above ``min_score``."""

    min_score: float
    context: Context = Context.POST_TEXT

    def describe(self) -> str:
        return f"classifier score >= {self.min_score:g} for {self.context.value}"


Pattern = Union[WordPattern, RegexPattern, LinkDomainPattern, ClassifierPattern]


def field_values(event: NormalizedEvent, context: Context) -> Tuple[str, ...]:
    """Return the text values a Word/Regex pattern tests for ``context``.

    Contexts the event kind does not have yield an empty tuple.
    """

    account = event.target
    if context is Context.USERNAME:
        return (account.handle,)
    if context is Context.DISPLAY_NAME:
        return (account.display_name,)
    if context is Context.BIO:
        return (account.bio,)
    if not isinstance(event, PostEvent):
        return ()
    if context is Context.POST_TEXT:
        return (event.text,)
    if context is Context.CONTENT_WARNING:
        return (event.content_warning,)
    if context is Context.HASHTAG:
        return event.hashtags
    if context is Context.MENTION:
        return event.mentions
    if context is Context.LINK:
        return event.urls + event.content_warning_urls
    return ()


def link_values(event: NormalizedEvent, context: Context) -> Tuple[str, ...]:
    """Return the URLs discovered in ``context`` for LinkDomain patterns."""

    if context is Context.BIO:
        return event.target.bio_urls
    if isinstance(event, AccountEvent):
        return ()
    if context is Context.POST_TEXT:
        return event.urls
    if context is Context.CONTENT_WARNING:
        return event.content_warning_urls
    if context is Context.LINK:
        return event.urls + event.content_warning_urls
    return ()


def matches(
    pattern: Pattern,
    event: NormalizedEvent,
    scores: Optional[Mapping[Context, float]] = None,
) -> bool:
    """Decide whether one pattern matches one event."""

    if isinstance(pattern, LinkDomainPattern):
        return any(pattern.test(url) for url in link_values(event, pattern.context))
    if isinstance(pattern, ClassifierPattern):
        if not scores or pattern.context not in scores:
            return False
        return scores[pattern.context] >= pattern.min_score
    return any(pattern.test(value) for value in field_values(event, pattern.context) if value)


def _parse_context(raw: Any, allowed: Optional[frozenset], location: str) -> Context:
    try:
        context = Context(raw)
    except ValueError as exc:
        choices = ", ".join(c.value for c in Context)
        raise ConfigError(f"unknown context {raw!r} (expected one of: {choices})", location) from exc
    if allowed is not None and context not in allowed:
        choices = ", ".join(sorted(c.value for c in allowed))
        raise ConfigError(f"context {context.value!r} is not valid here (expected one of: {choices})", location)
    return context


def _check_keys(raw: Mapping[str, Any], allowed: set, location: str) -> None:
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ConfigError(f"unknown key(s): {', '.join(unknown)}", location)


def _non_empty_string(raw: Any, key: str, location: str) -> str:
    if not isinstance(raw, str) or not raw:
        raise ConfigError(f"{key} must be a non-empty string", location)
    return raw


def build_pattern(raw: Any, location: str) -> Pattern:
    """Validate and compile one pattern config entry.

    Exactly one of ``word``, ``regex``, ``link_domain`` or ``classifier`` must
    be present; all errors are raised as ``ConfigError`` naming ``location``.
    """

    if not isinstance(raw, Mapping):
        raise ConfigError("pattern must be an object", location)
    kinds = [key for key in ("word", "regex", "link_domain", "classifier") if key in raw]
    if len(kinds) != 1:
        raise ConfigError("pattern needs exactly one of word, regex, link_domain, classifier", location)
    kind = kinds[0]
    location = f"{location}.{kind}"
    context_raw = raw.get("context", Context.POST_TEXT.value)

    if kind == "word":
        _check_keys(raw, {"word", "context", "whole_word"}, location)
        return WordPattern(
            word=_non_empty_string(raw["word"], "word", location),
            context=_parse_context(context_raw, None, location),
            whole_word=bool(raw.get("whole_word", False)),
        )

    if kind == "regex":
        _check_keys(raw, {"regex", "context", "ignore_case"}, location)
        expression = _non_empty_string(raw["regex"], "regex", location)
        flags = re.IGNORECASE if raw.get("ignore_case", False) else 0
        try:
            compiled = re.compile(expression, flags)
        except re.error as exc:
            raise ConfigError(f"regex {expression!r} does not compile: {exc}", location) from exc
        return RegexPattern(expression=compiled, context=_parse_context(context_raw, None, location))

    if kind == "link_domain":
        _check_keys(raw, {"link_domain", "context", "include_subdomains"}, location)
        domain = _non_empty_string(raw["link_domain"], "link_domain", location).strip().rstrip(".").lower()
        if "/" in domain or ":" in domain or not domain:
            raise ConfigError(f"link_domain {raw['link_domain']!r} must be a bare host name", location)
        return LinkDomainPattern(
            domain=domain,
            context=_parse_context(context_raw, LINK_CONTEXTS, location),
            include_subdomains=bool(raw.get("include_subdomains", True)),
        )

    _check_keys(raw, {"classifier", "context"}, location)
    settings = raw["classifier"]
    if not isinstance(settings, Mapping) or "min_score" not in settings:
        raise ConfigError("classifier needs a min_score", location)
    try:
        min_score = float(settings["min_score"])
    except (TypeError, ValueError) as exc:
        raise ConfigError("classifier min_score must be a number", location) from exc
    return ClassifierPattern(
        min_score=min_score,
        context=_parse_context(context_raw, CLASSIFIER_CONTEXTS, location),
    )
