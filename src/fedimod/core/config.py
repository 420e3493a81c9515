"""Core configuration dataclasses.

We keep config file parsing outside the core, but these dataclasses define the
shape the core expects so the registry builder and adapters can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class Restrict(str, Enum):
    """Moderation action kinds, declared from least to most severe."""

    SENSITIVE = "sensitive"
    DISABLE = "disable"
    SILENCE = "silence"
    SUSPEND = "suspend"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {kind: rank for rank, kind in enumerate(Restrict)}


@dataclass(frozen=True)
class ReportSpec:
    """Report metadata attached to a rule.

    When ``rule_ids`` is non-empty the report is filed as a rule violation and
    ``spam`` is ignored.
    """

    forward: bool = False
    rule_ids: Tuple[str, ...] = ()
    spam: bool = False


@dataclass(frozen=True)
class Credentials:
    """API credentials for one bot account."""

    access_token: str
    scopes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ApiConfig:
    """Settings applied to every call the orchestrator makes to the remote API."""

    timeout_seconds: float = 10.0
    user_agent: str = "fedimod"


@dataclass(frozen=True)
class ClassifierConfig:
    """Location of the optional content-classification service."""

    url: str
    timeout_seconds: float = 5.0
