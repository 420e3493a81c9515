"""rspamd content-classification adapter.

Wraps the text in a minimal MIME message and posts it to an rspamd
controller's ``/checkv2`` endpoint, returning the numeric score. The sender
and message id headers come from the event, so rspamd's header rules see who
wrote it. The core treats any failure here as "no score".
"""

from __future__ import annotations

from email import policy
from email.headerregistry import Address
from email.message import EmailMessage
from typing import Optional

import httpx

from fedimod.core.config import ClassifierConfig
from fedimod.core.models import NormalizedEvent, PostEvent


def _header_value(value: str) -> str:
    # Header values may not contain line breaks.
    return " ".join(value.split())


def to_mime(text: str, event: Optional[NormalizedEvent] = None) -> bytes:
    """Render ``text`` as an RFC 5322 message, with headers from ``event`` if given."""

    message = EmailMessage(policy=policy.SMTPUTF8)
    if event is not None:
        account = event.target
        message["From"] = Address(
            display_name=_header_value(account.display_name),
            username=account.username,
            domain=account.domain,
        )
        message["Message-ID"] = f"<{event.id}@{account.domain}>"
        if isinstance(event, PostEvent) and event.content_warning:
            message["Subject"] = _header_value(event.content_warning)
    message.set_content(text)
    return message.as_bytes()


class RspamdClassifier:
    """Classifier adapter that satisfies the core ClassifierPort contract."""

    def __init__(self, config: ClassifierConfig, http: Optional[httpx.AsyncClient] = None) -> None:
        self._config = config
        self._http = http or httpx.AsyncClient(timeout=config.timeout_seconds)

    def _endpoint(self) -> str:
        return f"{self._config.url.rstrip('/')}/checkv2"

    async def classify(self, text: str, event: Optional[NormalizedEvent] = None) -> float:
        response = await self._http.post(self._endpoint(), content=to_mime(text, event))
        response.raise_for_status()
        return float(response.json()["score"])

    async def aclose(self) -> None:
        await self._http.aclose()
