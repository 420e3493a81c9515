"""Tenant registry: instances, bot accounts and their rules.

The registry is an immutable snapshot. Reloading builds a brand-new snapshot
and swaps a single reference, so a request that grabbed ``current()`` keeps
seeing one consistent version until it finishes.
"""

from __future__ import annotations

import itertools
import logging
import os
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from fedimod.core.config import Credentials
from fedimod.core.errors import ConfigError
from fedimod.core.rules_engine import Rule, build_rules
from fedimod.core.signature import verify

LOGGER = logging.getLogger(__name__)

_VERSIONS = itertools.count(1)


@dataclass(frozen=True)
class BotAccount:
    """A moderator identity on one instance, with its ordered rules."""

    domain: str
    username: str
    credentials: Credentials
    rules: Tuple[Rule, ...]

    @property
    def key(self) -> Tuple[str, str]:
        return self.domain, self.username.lower()


@dataclass(frozen=True)
class Instance:
    """A remote instance, its webhook secret and its bot accounts."""

    domain: str
    webhook_secret: str = field(repr=False)
    bots: Mapping[str, BotAccount] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class TenantRegistry:
    """One immutable configuration snapshot."""

    instances: Mapping[str, Instance]
    version: int = 0

    def instance(self, domain: str) -> Optional[Instance]:
        return self.instances.get(domain.lower())

    def resolve(self, instance_domain: str, target_username: str) -> Optional[Tuple[Instance, BotAccount]]:
        """Look up the instance and bot account an event is addressed to."""

        instance = self.instance(instance_domain)
        if instance is None:
            return None
        bot = instance.bots.get(target_username.lower())
        if bot is None:
            return None
        return instance, bot

    def bots_for(self, domain: str) -> Tuple[BotAccount, ...]:
        instance = self.instance(domain)
        if instance is None:
            return ()
        return tuple(instance.bots.values())

    def instances_signed_by(self, raw_body: bytes, signature: Optional[str]) -> List[Instance]:
        """Instances whose webhook secret validates ``signature`` over ``raw_body``."""

        return [
            instance
            for instance in self.instances.values()
            if verify(instance.webhook_secret, raw_body, signature)
        ]

    def secrets(self) -> List[str]:
        """Every secret value held by this snapshot, for log redaction."""

        values = []
        for instance in self.instances.values():
            values.append(instance.webhook_secret)
            values.extend(bot.credentials.access_token for bot in instance.bots.values())
        return [value for value in values if value]


def _secret(raw: Mapping[str, Any], key: str, env: Mapping[str, str], location: str) -> str:
    """Read ``key`` inline or from the environment variable named by ``key_env``."""

    inline = raw.get(key)
    env_name = raw.get(f"{key}_env")
    if inline and env_name:
        raise ConfigError(f"set only one of {key} and {key}_env", location)
    if inline:
        if not isinstance(inline, str):
            raise ConfigError(f"{key} must be a string", location)
        return inline
    if env_name:
        value = env.get(str(env_name))
        if not value:
            raise ConfigError(f"environment variable {env_name} for {key} is not set", location)
        return value
    raise ConfigError(f"{key} (or {key}_env) is required", location)


def _build_bot(domain: str, raw: Any, env: Mapping[str, str], location: str) -> BotAccount:
    if not isinstance(raw, Mapping):
        raise ConfigError("bot must be an object", location)
    username = raw.get("username")
    if not isinstance(username, str) or not username.strip():
        raise ConfigError("bot needs a non-empty username", f"{location}.username")
    username = username.strip().lstrip("@")
    location = f"{location}[{username}]"

    unknown = sorted(set(raw) - {"username", "access_token", "access_token_env", "scopes", "rules"})
    if unknown:
        raise ConfigError(f"unknown key(s): {', '.join(unknown)}", location)

    scopes = raw.get("scopes", []) or []
    if isinstance(scopes, str):
        scopes = scopes.split()
    credentials = Credentials(
        access_token=_secret(raw, "access_token", env, location),
        scopes=tuple(str(scope) for scope in scopes),
    )
    rules_raw = raw.get("rules", [])
    if not isinstance(rules_raw, list):
        raise ConfigError("rules must be a list", f"{location}.rules")
    rules = build_rules(rules_raw, f"{location}.rules")
    return BotAccount(domain=domain, username=username, credentials=credentials, rules=tuple(rules))


def _build_instance(raw: Any, env: Mapping[str, str], location: str) -> Instance:
    if not isinstance(raw, Mapping):
        raise ConfigError("instance must be an object", location)
    domain = raw.get("domain")
    if not isinstance(domain, str) or not domain.strip():
        raise ConfigError("instance needs a non-empty domain", f"{location}.domain")
    domain = domain.strip().lower()
    location = f"{location}[{domain}]"

    unknown = sorted(set(raw) - {"domain", "webhook_secret", "webhook_secret_env", "bots"})
    if unknown:
        raise ConfigError(f"unknown key(s): {', '.join(unknown)}", location)

    secret = _secret(raw, "webhook_secret", env, location)
    bots_raw = raw.get("bots", [])
    if not isinstance(bots_raw, list) or not bots_raw:
        raise ConfigError("instance needs at least one bot account", f"{location}.bots")

    bots: dict[str, BotAccount] = {}
    for index, bot_raw in enumerate(bots_raw):
        bot = _build_bot(domain, bot_raw, env, f"{location}.bots[{index}]")
        if bot.username.lower() in bots:
            raise ConfigError(f"duplicate bot username {bot.username!r}", f"{location}.bots[{index}]")
        bots[bot.username.lower()] = bot
    return Instance(domain=domain, webhook_secret=secret, bots=MappingProxyType(bots))


def build_registry(
    instances_config: Iterable[Any],
    env: Optional[Mapping[str, str]] = None,
) -> TenantRegistry:
    """Validate the whole tenant configuration and return a fresh snapshot."""

    env = os.environ if env is None else env
    instances: dict[str, Instance] = {}
    for index, raw in enumerate(instances_config):
        instance = _build_instance(raw, env, f"instances[{index}]")
        if instance.domain in instances:
            raise ConfigError(f"duplicate instance domain {instance.domain!r}", f"instances[{index}]")
        instances[instance.domain] = instance
    return TenantRegistry(instances=MappingProxyType(instances), version=next(_VERSIONS))


class RegistryHolder:
    """Holds the current registry snapshot and swaps it atomically."""

    def __init__(self, registry: TenantRegistry) -> None:
        self._registry = registry
        self._reload_lock = threading.Lock()

    def current(self) -> TenantRegistry:
        return self._registry

    def swap(self, registry: TenantRegistry) -> TenantRegistry:
        """Install ``registry`` and return the one it replaced."""

        previous = self._registry
        self._registry = registry
        return previous

    def reload(self, loader: Callable[[], TenantRegistry]) -> TenantRegistry:
        """Build a new snapshot with ``loader`` and install it.

        On ``ConfigError`` the previous snapshot stays in place and the error
        propagates to the operator.
        """

        with self._reload_lock:
            registry = loader()
            self.swap(registry)
        LOGGER.info(
            "Registry reloaded: version=%s instances=%s",
            registry.version,
            len(registry.instances),
        )
        return registry
