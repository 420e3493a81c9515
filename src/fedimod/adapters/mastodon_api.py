"""Mastodon-compatible moderation API adapter.

Implements the core ModerationApiPort over the remote platform's REST API
with httpx. Any non-2xx answer becomes an ``ActionFailure`` so the
orchestrator can record it per rule.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

import httpx

from fedimod.core.config import ApiConfig, Credentials, Restrict
from fedimod.core.errors import ActionFailure, AlreadyApplied, CredentialError
from fedimod.core.models import AccountRef
from fedimod.core.ports import CredentialProvider
from fedimod.core.registry import BotAccount

LOGGER = logging.getLogger(__name__)

# Account action endpoint answers for an action that is already in effect.
_ALREADY_APPLIED_STATUSES = {409, 422}


class StaticCredentialProvider:
    """Hands out the access token from configuration."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def get_token(self) -> str:
        if not self._credentials.access_token:
            raise CredentialError("No access token configured")
        return self._credentials.access_token


class MastodonApiClient:
    """Thin async wrapper around the report and admin account endpoints."""

    def __init__(self, http: httpx.AsyncClient, credentials: CredentialProvider) -> None:
        self._http = http
        self._credentials = credentials

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._credentials.get_token()}"}
        try:
            response = await self._http.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise ActionFailure(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ActionFailure(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def verify_credentials(self) -> Dict[str, Any]:
        response = await self._request("GET", "/api/v1/accounts/verify_credentials")
        return response.json()

    async def create_report(
        self,
        target: AccountRef,
        comment: str,
        rule_ids: Sequence[str],
        forward: bool,
        spam: bool,
        status_ids: Sequence[str] = (),
    ) -> str:
        # Specific rule violations take precedence over spam.
        if rule_ids:
            category = "violation"
        elif spam:
            category = "spam"
        else:
            category = "other"
        payload: Dict[str, Any] = {
            "account_id": target.id,
            "comment": comment,
            "forward": forward,
            "category": category,
        }
        if status_ids:
            payload["status_ids"] = list(status_ids)
        if rule_ids:
            payload["rule_ids"] = list(rule_ids)
        response = await self._request("POST", "/api/v1/reports", json=payload)
        try:
            return str(response.json()["id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ActionFailure("Report response did not include an id") from exc

    async def apply_restriction(self, target: AccountRef, kind: Restrict, cites: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"type": kind.value}
        if cites is not None:
            payload["report_id"] = cites
        try:
            await self._request("POST", f"/api/v1/admin/accounts/{target.id}/action", json=payload)
        except ActionFailure as exc:
            if exc.status_code in _ALREADY_APPLIED_STATUSES:
                raise AlreadyApplied(str(exc), status_code=exc.status_code) from exc
            raise

    async def resolve_report(self, report_id: str) -> None:
        await self._request("POST", f"/api/v1/admin/reports/{report_id}/resolve")


class MastodonClientPool:
    """Builds API clients per bot account, sharing one HTTP client per domain."""

    def __init__(self, api_config: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._api_config = api_config
        self._transport = transport
        self._http: Dict[str, httpx.AsyncClient] = {}
        self._clients: Dict[Tuple[str, str, str], MastodonApiClient] = {}

    def _http_for(self, domain: str) -> httpx.AsyncClient:
        http = self._http.get(domain)
        if http is None:
            http = httpx.AsyncClient(
                base_url=f"https://{domain}",
                headers={"User-Agent": self._api_config.user_agent},
                timeout=self._api_config.timeout_seconds,
                transport=self._transport,
            )
            self._http[domain] = http
        return http

    def for_bot(self, bot: BotAccount) -> MastodonApiClient:
        # Keyed on the token too, so a reload with new credentials gets a new client.
        key = (bot.domain, bot.username.lower(), bot.credentials.access_token)
        client = self._clients.get(key)
        if client is None:
            client = MastodonApiClient(self._http_for(bot.domain), StaticCredentialProvider(bot.credentials))
            self._clients[key] = client
        return client

    async def aclose(self) -> None:
        for http in self._http.values():
            await http.aclose()
        self._http.clear()
        self._clients.clear()
