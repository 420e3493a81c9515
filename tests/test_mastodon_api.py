from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from fakes import DOMAIN, make_author, make_bot
from fedimod.adapters.mastodon_api import MastodonApiClient, MastodonClientPool, StaticCredentialProvider
from fedimod.core.config import ApiConfig, Credentials, Restrict
from fedimod.core.errors import ActionFailure, AlreadyApplied, CredentialError


class Recorder:
    def __init__(self, responses=None) -> None:
        self.requests: list[httpx.Request] = []
        self.responses = responses or {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.get(request.url.path, httpx.Response(200, json={}))

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def _client(recorder: Recorder, token: str = "token-123") -> MastodonApiClient:
    http = httpx.AsyncClient(base_url=f"https://{DOMAIN}", transport=httpx.MockTransport(recorder))
    return MastodonApiClient(http, StaticCredentialProvider(Credentials(access_token=token)))


def test_create_report_posts_payload() -> None:
    recorder = Recorder({"/api/v1/reports": httpx.Response(200, json={"id": 555})})
    client = _client(recorder)

    report_id = asyncio.run(
        client.create_report(make_author(), "Automod rules broken:\n- casino", ("8",), True, True, ("109",))
    )

    assert report_id == "555"
    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.headers["Authorization"] == "Bearer token-123"
    assert recorder.body() == {
        "account_id": "42",
        "comment": "Automod rules broken:\n- casino",
        "forward": True,
        "category": "violation",
        "status_ids": ["109"],
        "rule_ids": ["8"],
    }


@pytest.mark.parametrize(
    "rule_ids, spam, category",
    [((), True, "spam"), ((), False, "other"), (("3",), True, "violation")],
)
def test_report_category(rule_ids, spam, category) -> None:
    recorder = Recorder({"/api/v1/reports": httpx.Response(200, json={"id": "1"})})

    asyncio.run(_client(recorder).create_report(make_author(), "c", rule_ids, False, spam))

    assert recorder.body()["category"] == category
    assert "status_ids" not in recorder.body()


def test_apply_restriction_cites_report() -> None:
    recorder = Recorder()

    asyncio.run(_client(recorder).apply_restriction(make_author(), Restrict.SUSPEND, "555"))

    assert recorder.requests[0].url.path == "/api/v1/admin/accounts/42/action"
    assert recorder.body() == {"type": "suspend", "report_id": "555"}


def test_apply_restriction_without_report() -> None:
    recorder = Recorder()

    asyncio.run(_client(recorder).apply_restriction(make_author(), Restrict.SENSITIVE))

    assert recorder.body() == {"type": "sensitive"}


def test_conflict_means_already_applied() -> None:
    recorder = Recorder({"/api/v1/admin/accounts/42/action": httpx.Response(422, json={"error": "already"})})

    with pytest.raises(AlreadyApplied):
        asyncio.run(_client(recorder).apply_restriction(make_author(), Restrict.SILENCE))


def test_server_error_is_action_failure() -> None:
    recorder = Recorder({"/api/v1/reports": httpx.Response(503, text="maintenance")})

    with pytest.raises(ActionFailure) as excinfo:
        asyncio.run(_client(recorder).create_report(make_author(), "c", (), False, False))

    assert excinfo.value.status_code == 503
    assert not isinstance(excinfo.value, AlreadyApplied)
    assert "maintenance" in str(excinfo.value)


def test_network_error_is_action_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    http = httpx.AsyncClient(base_url=f"https://{DOMAIN}", transport=httpx.MockTransport(handler))
    client = MastodonApiClient(http, StaticCredentialProvider(Credentials(access_token="t")))

    with pytest.raises(ActionFailure):
        asyncio.run(client.resolve_report("1"))


def test_missing_report_id_is_action_failure() -> None:
    recorder = Recorder({"/api/v1/reports": httpx.Response(200, json={})})

    with pytest.raises(ActionFailure):
        asyncio.run(_client(recorder).create_report(make_author(), "c", (), False, False))


def test_resolve_report_path() -> None:
    recorder = Recorder()

    asyncio.run(_client(recorder).resolve_report("555"))

    assert recorder.requests[0].url.path == "/api/v1/admin/reports/555/resolve"


def test_empty_token_is_credential_error() -> None:
    with pytest.raises(CredentialError):
        asyncio.run(_client(Recorder(), token="").resolve_report("1"))


def test_pool_reuses_clients_per_bot() -> None:
    recorder = Recorder()
    pool = MastodonClientPool(ApiConfig(user_agent="fedimod-test"), transport=httpx.MockTransport(recorder))
    bot = make_bot([])
    other = make_bot([], username="helper")

    async def scenario():
        first = pool.for_bot(bot)
        assert pool.for_bot(bot) is first
        assert pool.for_bot(other) is not first
        await first.verify_credentials()
        await pool.aclose()

    asyncio.run(scenario())

    request = recorder.requests[0]
    assert str(request.url) == f"https://{DOMAIN}/api/v1/accounts/verify_credentials"
    assert request.headers["User-Agent"] == "fedimod-test"
