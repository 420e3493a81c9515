"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to the remote platform's entity JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union


@dataclass(frozen=True)
class AccountRef:
    """An account as seen by the rule engine, with enough identity to act on it."""

    id: str
    username: str
    domain: str
    display_name: str = ""
    bio: str = ""
    bio_urls: Tuple[str, ...] = ()
    local: bool = False

    @property
    def handle(self) -> str:
        """Fully qualified ``@user@domain`` form."""

        return f"@{self.username}@{self.domain}"


@dataclass(frozen=True)
class PostEvent:
    """A created or edited post."""

    id: str
    author: AccountRef
    text: str
    content_warning: str = ""
    local: bool = False
    urls: Tuple[str, ...] = ()
    content_warning_urls: Tuple[str, ...] = ()
    hashtags: Tuple[str, ...] = ()
    mentions: Tuple[str, ...] = ()

    @property
    def target(self) -> AccountRef:
        return self.author


@dataclass(frozen=True)
class AccountEvent:
    """A created, approved, or updated account."""

    id: str
    account: AccountRef

    @property
    def username(self) -> str:
        return self.account.username

    @property
    def display_name(self) -> str:
        return self.account.display_name

    @property
    def bio(self) -> str:
        return self.account.bio

    @property
    def local(self) -> bool:
        return self.account.local

    @property
    def target(self) -> AccountRef:
        return self.account


@dataclass(frozen=True)
class Ignored:
    """A recognized event kind that the rule engine does not evaluate."""

    event_type: str


NormalizedEvent = Union[PostEvent, AccountEvent]
