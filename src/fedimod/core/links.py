"""HTML flattening and link extraction helpers (core domain)."""

from __future__ import annotations

import re
from html.parser import HTMLParser
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

_BARE_URL = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".,;:!?)]}'\""
_BLOCK_TAGS = {"p", "br", "div", "li", "blockquote", "pre", "h1", "h2", "h3", "h4", "h5", "h6"}


class _ContentParser(HTMLParser):
    """Collect visible text and non-mention anchor targets from post HTML."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.parts: List[str] = []
        self.hrefs: List[str] = []

    def handle_starttag(self, tag: str, attrs) -> None:
        if tag in _BLOCK_TAGS and self.parts:
            self.parts.append("\n")
        if tag != "a":
            return
        attributes = dict(attrs)
        classes = (attributes.get("class") or "").split()
        # Mentions and hashtags are links to profiles/tag pages, not shared links.
        if "mention" in classes or "hashtag" in classes:
            return
        href = attributes.get("href")
        if href:
            self.hrefs.append(href)

    def handle_startendtag(self, tag: str, attrs) -> None:
        if tag == "br":
            self.parts.append("\n")

    def handle_data(self, data: str) -> None:
        self.parts.append(data)


def _dedupe(values: Iterable[str]) -> Tuple[str, ...]:
    seen = set()
    ordered: List[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return tuple(ordered)


def find_bare_urls(text: str) -> List[str]:
    """Return http(s) links that appear literally in plain text."""

    urls = []
    for match in _BARE_URL.finditer(text):
        url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
        if url_host(url):
            urls.append(url)
    return urls


def flatten_html(content: str) -> Tuple[str, Tuple[str, ...]]:
    """Return ``(plain_text, urls)`` for an HTML fragment.

    URLs come from anchor targets first, then from bare links in the text,
    deduplicated with first-seen order preserved.
    """

    if not content:
        return "", ()
    parser = _ContentParser()
    parser.feed(content)
    parser.close()
    text = "".join(parser.parts).strip()
    hrefs = [href for href in parser.hrefs if url_host(href)]
    return text, _dedupe(hrefs + find_bare_urls(text))


def plain_text_urls(text: str) -> Tuple[str, ...]:
    """Deduplicated bare links in a plain-text field such as a content warning."""

    return _dedupe(find_bare_urls(text or ""))


def url_host(url: str) -> Optional[str]:
    """Return the lowercased host name of an http(s) URL, or None."""

    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        return None
    if parts.scheme.lower() not in {"http", "https"} or not host:
        return None
    return host.rstrip(".").lower() or None


def host_matches(host: Optional[str], domain: str, include_subdomains: bool) -> bool:
    """Compare a link host to a configured domain on label boundaries."""

    if not host:
        return False
    domain = domain.rstrip(".").lower()
    if host == domain:
        return True
    return include_subdomains and host.endswith("." + domain)
