"""HTTP surface for webhook deliveries and health checks.

FastAPI is only the transport: every decision is made by the core
WebhookIntake, which this module maps onto status codes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence

from fastapi import FastAPI, Header, Query, Request, Response

from fedimod.core.intake import IntakeStatus, WebhookIntake
from fedimod.core.signature import SIGNATURE_HEADER

LOGGER = logging.getLogger(__name__)

_STATUS_CODES = {
    IntakeStatus.ACCEPTED: 200,
    IntakeStatus.IGNORED: 204,
    IntakeStatus.UNAUTHORIZED: 401,
    IntakeStatus.DECODE_ERROR: 422,
    IntakeStatus.UNKNOWN_BOT: 404,
    IntakeStatus.UNAVAILABLE: 503,
}


def create_app(
    intake: WebhookIntake,
    on_shutdown: Sequence[Callable[[], Awaitable[None]]] = (),
) -> FastAPI:
    """Build the ASGI app around one intake.

    On shutdown the intake stops accepting deliveries and waits for in-flight
    processing before the ``on_shutdown`` hooks close shared clients.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await intake.close()
        for hook in on_shutdown:
            await hook()
        LOGGER.info("Shutdown complete")

    app = FastAPI(title="fedimod", lifespan=lifespan)

    @app.get("/healthcheck", status_code=204)
    async def healthcheck() -> Response:
        return Response(status_code=204)

    @app.post("/webhook")
    async def receive_webhook(
        request: Request,
        domain: Optional[str] = Query(default=None),
        username: Optional[str] = Query(default=None),
        signature: Optional[str] = Header(default=None, alias=SIGNATURE_HEADER),
    ) -> Response:
        # The signature covers the exact bytes, so read them before any parsing.
        raw_body = await request.body()
        result = await intake.receive(raw_body, signature, domain=domain, username=username)
        return Response(status_code=_STATUS_CODES[result])

    return app
