from __future__ import annotations

from fastapi.testclient import TestClient

from fakes import DOMAIN, SECRET, FakeApi, status_payload
from fedimod.core.intake import WebhookIntake
from fedimod.core.processor import EventProcessor
from fedimod.core.registry import RegistryHolder, build_registry
from fedimod.core.signature import SIGNATURE_HEADER, compute_signature
from fedimod.server import create_app


def _app(api: FakeApi, closed: list):
    registry = build_registry(
        [
            {
                "domain": DOMAIN,
                "webhook_secret": SECRET,
                "bots": [
                    {
                        "username": "automod",
                        "access_token": "token",
                        "rules": [
                            {
                                "name": "casino",
                                "report": {"rule_ids": ["8"]},
                                "restrict": "suspend",
                                "patterns": [{"word": "casino"}],
                            }
                        ],
                    }
                ],
            }
        ]
    )
    intake = WebhookIntake(RegistryHolder(registry), EventProcessor(lambda bot: api))

    async def on_close() -> None:
        closed.append(True)

    return create_app(intake, on_shutdown=[on_close])


def test_healthcheck_returns_no_content() -> None:
    with TestClient(_app(FakeApi(), [])) as client:
        response = client.get("/healthcheck")

    assert response.status_code == 204
    assert response.content == b""


def test_signed_webhook_is_accepted_and_processed() -> None:
    api = FakeApi()
    closed: list = []
    body = status_payload("<p>casino night</p>")

    with TestClient(_app(api, closed)) as client:
        response = client.post(
            "/webhook",
            params={"domain": DOMAIN},
            content=body,
            headers={SIGNATURE_HEADER: compute_signature(SECRET, body), "Content-Type": "application/json"},
        )

    assert response.status_code == 200
    assert [call[0] for call in api.calls] == ["report", "restrict", "resolve"]
    assert closed == [True]


def test_unsigned_webhook_is_unauthorized() -> None:
    api = FakeApi()
    body = status_payload("<p>casino</p>")

    with TestClient(_app(api, [])) as client:
        missing = client.post("/webhook", params={"domain": DOMAIN}, content=body)
        wrong = client.post(
            "/webhook",
            params={"domain": DOMAIN},
            content=body,
            headers={SIGNATURE_HEADER: compute_signature("nope", body)},
        )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert api.calls == []


def test_malformed_body_is_unprocessable() -> None:
    body = b"{broken"

    with TestClient(_app(FakeApi(), [])) as client:
        response = client.post(
            "/webhook",
            params={"domain": DOMAIN},
            content=body,
            headers={SIGNATURE_HEADER: compute_signature(SECRET, body)},
        )

    assert response.status_code == 422


def test_other_events_and_unknown_bots() -> None:
    ignored = b'{"event": "report.created", "object": {"id": "1"}}'
    body = status_payload("<p>hi</p>")

    with TestClient(_app(FakeApi(), [])) as client:
        skipped = client.post(
            "/webhook",
            params={"domain": DOMAIN},
            content=ignored,
            headers={SIGNATURE_HEADER: compute_signature(SECRET, ignored)},
        )
        unknown = client.post(
            "/webhook",
            params={"domain": DOMAIN, "username": "ghost"},
            content=body,
            headers={SIGNATURE_HEADER: compute_signature(SECRET, body)},
        )

    assert skipped.status_code == 204
    assert unknown.status_code == 404
