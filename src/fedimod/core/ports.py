"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for the remote moderation API, the optional
classifier and the audit sink so that the core can be reused with different
backends.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from fedimod.core.config import Restrict
from fedimod.core.models import AccountRef, NormalizedEvent
from fedimod.core.outcomes import TriggerResult


class ModerationApiPort(Protocol):
    """Remote moderation operations required by the orchestrator.

    Implementations raise ``ActionFailure`` (or ``AlreadyApplied``) for
    rejected calls and ``CredentialError`` when no valid token is available.
    Retries, if any, happen inside the implementation.
    """

    async def create_report(
        self,
        target: AccountRef,
        comment: str,
        rule_ids: Sequence[str],
        forward: bool,
        spam: bool,
        status_ids: Sequence[str] = (),
    ) -> str:
        ...

    async def apply_restriction(
        self,
        target: AccountRef,
        kind: Restrict,
        cites: Optional[str] = None,
    ) -> None:
        ...

    async def resolve_report(self, report_id: str) -> None:
        ...


class ClassifierPort(Protocol):
    """Optional content-classification service."""

    async def classify(self, text: str, event: Optional[NormalizedEvent] = None) -> float:
        """Score ``text``; ``event`` supplies sender metadata where the service uses it."""
        ...


class AuditPort(Protocol):
    """Sink for per-event trigger results."""

    def record(self, result: TriggerResult) -> None:
        ...


class CredentialProvider(Protocol):
    """Hands out a currently-valid access token or raises ``CredentialError``."""

    def get_token(self) -> str:
        ...
