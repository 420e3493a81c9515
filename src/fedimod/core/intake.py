"""Webhook intake: route, verify, decode, and schedule processing.

The intake resolves the registry snapshot once per delivery, so a reload that
lands mid-request cannot mix secrets or rules from two configurations.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Optional, Set

from fedimod.core.errors import DecodeError
from fedimod.core.models import Ignored
from fedimod.core.normalizer import normalize
from fedimod.core.processor import EventProcessor
from fedimod.core.registry import RegistryHolder
from fedimod.core.signature import verify

LOGGER = logging.getLogger(__name__)

_BODY_LOG_CHARS = 500


class IntakeStatus(str, Enum):
    ACCEPTED = "accepted"
    IGNORED = "ignored"
    UNAUTHORIZED = "unauthorized"
    DECODE_ERROR = "decode_error"
    UNKNOWN_BOT = "unknown_bot"
    UNAVAILABLE = "unavailable"


class WebhookIntake:
    """Accepts signed deliveries and runs processing as tracked tasks."""

    def __init__(self, holder: RegistryHolder, processor: EventProcessor) -> None:
        self._holder = holder
        self._processor = processor
        self._tasks: Set[asyncio.Task] = set()
        self._accepting = True

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def receive(
        self,
        raw_body: bytes,
        signature: Optional[str],
        domain: Optional[str] = None,
        username: Optional[str] = None,
    ) -> IntakeStatus:
        """Take one delivery through verification and decoding.

        Returns as soon as processing is scheduled; rule outcomes are never
        reported back to the sender.
        """

        if not self._accepting:
            return IntakeStatus.UNAVAILABLE

        registry = self._holder.current()
        if domain:
            instance = registry.instance(domain)
            if instance is None or not verify(instance.webhook_secret, raw_body, signature):
                LOGGER.warning("Rejected webhook delivery for %s: bad signature or unknown domain", domain)
                return IntakeStatus.UNAUTHORIZED
        else:
            candidates = registry.instances_signed_by(raw_body, signature)
            if len(candidates) != 1:
                LOGGER.warning(
                    "Rejected webhook delivery without domain: %s instances could have signed it",
                    len(candidates),
                )
                return IntakeStatus.UNAUTHORIZED
            instance = candidates[0]

        if username:
            resolved = registry.resolve(instance.domain, username)
            if resolved is None:
                LOGGER.warning("%s: webhook delivery for unknown bot account %s", instance.domain, username)
                return IntakeStatus.UNKNOWN_BOT
            bots = (resolved[1],)
        else:
            bots = registry.bots_for(instance.domain)

        try:
            event = normalize(instance.domain, raw_body)
        except DecodeError as exc:
            LOGGER.error(
                "%s: Decoding error %s: %s",
                instance.domain,
                exc,
                raw_body[:_BODY_LOG_CHARS].decode("utf-8", errors="replace"),
            )
            return IntakeStatus.DECODE_ERROR

        if isinstance(event, Ignored):
            return IntakeStatus.IGNORED

        for bot in bots:
            self._spawn(self._processor.handle(bot, event), f"{bot.username}@{bot.domain}")
        return IntakeStatus.ACCEPTED

    def _spawn(self, coro: Awaitable, label: str) -> None:
        task = asyncio.ensure_future(self._run(coro, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, coro: Awaitable, label: str) -> None:
        try:
            await coro
        except Exception:
            LOGGER.exception("%s: Error while processing event", label)

    async def drain(self) -> None:
        """Wait for every scheduled task, including ones added while waiting."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        """Stop accepting deliveries and let in-flight processing finish."""

        self._accepting = False
        if self._tasks:
            LOGGER.info("Waiting for %s in-flight events", len(self._tasks))
        await self.drain()
