"""Webhook payload to core event mapping.

This keeps the remote platform's entity JSON out of the rule engine. Only the
fields the patterns can test are carried over.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Union

from fedimod.core.errors import DecodeError
from fedimod.core.links import flatten_html, plain_text_urls
from fedimod.core.models import AccountEvent, AccountRef, Ignored, PostEvent

LOGGER = logging.getLogger(__name__)

POST_EVENT_TYPES = {"status.created", "status.updated"}
ACCOUNT_EVENT_TYPES = {"account.created", "account.updated", "account.approved"}


def _require_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise DecodeError(f"{what} must be an object")
    return value


def _require_id(entity: Mapping[str, Any], what: str) -> str:
    entity_id = entity.get("id")
    if entity_id is None or entity_id == "":
        raise DecodeError(f"{what} is missing an id")
    return str(entity_id)


def _optional_string(entity: Mapping[str, Any], key: str, what: str) -> str:
    value = entity.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"{what} {key} must be a string")
    return value


def _optional_list(entity: Mapping[str, Any], key: str, what: str) -> list:
    value = entity.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"{what} {key} must be a list")
    return value


def _split_acct(acct: str, instance_domain: str) -> tuple[str, str, bool]:
    """Return ``(username, domain, local)`` for an ``acct`` value."""

    username, _, domain = acct.lstrip("@").partition("@")
    if domain:
        return username, domain.lower(), domain.lower() == instance_domain.lower()
    return username, instance_domain.lower(), True


def build_account_ref(instance_domain: str, raw: Any) -> AccountRef:
    """Build an AccountRef from an account or admin-account entity."""

    account = _require_mapping(raw, "account")
    account_id = _require_id(account, "account")

    # Admin account entities wrap the public account under "account".
    public = account.get("account")
    if isinstance(public, Mapping):
        profile = public
        acct = public.get("acct") or account.get("username") or ""
        if account.get("domain") and "@" not in acct:
            acct = f"{acct}@{account['domain']}"
    else:
        profile = account
        acct = account.get("acct") or account.get("username") or ""
    if not acct:
        raise DecodeError("account is missing acct/username")

    username, domain, local = _split_acct(str(acct), instance_domain)
    bio, bio_urls = flatten_html(str(profile.get("note") or ""))
    return AccountRef(
        id=account_id,
        username=username,
        domain=domain,
        display_name=str(profile.get("display_name") or ""),
        bio=bio,
        bio_urls=bio_urls,
        local=local,
    )


def _build_post(instance_domain: str, status: Mapping[str, Any]) -> PostEvent:
    author = build_account_ref(instance_domain, status.get("account"))
    text, urls = flatten_html(_optional_string(status, "content", "status"))
    content_warning = _optional_string(status, "spoiler_text", "status")
    hashtags = tuple(
        str(tag.get("name", "")).lower()
        for tag in _optional_list(status, "tags", "status")
        if isinstance(tag, Mapping) and tag.get("name")
    )
    mentions = []
    for mention in _optional_list(status, "mentions", "status"):
        if not isinstance(mention, Mapping) or not mention.get("acct"):
            continue
        username, domain, _ = _split_acct(str(mention["acct"]), instance_domain)
        mentions.append(f"@{username}@{domain}")
    return PostEvent(
        id=_require_id(status, "status"),
        author=author,
        text=text,
        content_warning=content_warning,
        local=author.local,
        urls=urls,
        content_warning_urls=plain_text_urls(content_warning),
        hashtags=hashtags,
        mentions=tuple(mentions),
    )


def normalize(
    instance_domain: str,
    raw_payload: Union[bytes, str, Mapping[str, Any]],
) -> Union[PostEvent, AccountEvent, Ignored]:
    """Decode a verified webhook payload.

    Unsupported event types come back as ``Ignored``; malformed payloads raise
    ``DecodeError``.
    """

    if isinstance(raw_payload, (bytes, str)):
        try:
            payload = json.loads(raw_payload)
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecodeError(f"payload is not valid JSON: {exc}") from exc
    else:
        payload = raw_payload

    payload = _require_mapping(payload, "payload")
    event_type = payload.get("event")
    if not isinstance(event_type, str) or not event_type:
        raise DecodeError("payload has no event type")

    if event_type in POST_EVENT_TYPES:
        status = _require_mapping(payload.get("object"), "status")
        return _build_post(instance_domain, status)

    if event_type in ACCOUNT_EVENT_TYPES:
        account = build_account_ref(instance_domain, payload.get("object"))
        return AccountEvent(id=account.id, account=account)

    LOGGER.debug("%s: ignoring event type %s", instance_domain, event_type)
    return Ignored(event_type=event_type)
