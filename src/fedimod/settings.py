"""Static configuration for fedimod.

All user-editable settings (listen address, API timeouts, instances, bot
accounts and their rules) live in a single JSON file for quick edits without
touching Python. Secrets can stay out of that file by naming environment
variables, which are also read from a ``.env`` file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional

from dotenv import load_dotenv

from fedimod.core.config import ApiConfig, ClassifierConfig
from fedimod.core.errors import ConfigError
from fedimod.core.registry import TenantRegistry, build_registry

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

# Used when neither --config nor FEDIMOD_CONFIG is given.
DEFAULT_CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")
CONFIG_ENV_VAR = "FEDIMOD_CONFIG"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 1337


@dataclass(frozen=True)
class Settings:
    """Process-wide settings; tenant config is kept raw until the registry build."""

    path: str
    listen_host: str = DEFAULT_HOST
    listen_port: int = DEFAULT_PORT
    api: ApiConfig = field(default_factory=ApiConfig)
    classifier: Optional[ClassifierConfig] = None
    audit_enabled: bool = False
    audit_db_path: str = os.path.join(PROJECT_ROOT, "fedimod.db")
    logging: dict = field(default_factory=dict)
    instances: list = field(default_factory=list)


def resolve_config_path(override: Optional[str] = None) -> str:
    return override or os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH


def _load_json_config(path: str) -> dict:
    """Load the JSON config with a flat, user-friendly schema."""

    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid JSON: {exc}", path) from exc
    if not isinstance(data, dict):
        raise ConfigError("top level must be an object", path)
    return data


def _section(config: dict, name: str) -> dict:
    value = config.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be an object", name)
    return value


def _relative_to_root(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


def settings_from_dict(config: dict, path: str = "<memory>") -> Settings:
    """Build Settings from an already-parsed config mapping."""

    listen = _section(config, "listen")
    api = _section(config, "api")
    classifier = _section(config, "classifier")
    audit = _section(config, "audit")

    classifier_config = None
    if classifier.get("url"):
        classifier_config = ClassifierConfig(
            url=str(classifier["url"]),
            timeout_seconds=float(classifier.get("timeout_seconds", 5.0)),
        )

    instances = config.get("instances", [])
    if not isinstance(instances, list):
        raise ConfigError("instances must be a list", "instances")

    return Settings(
        path=path,
        listen_host=str(listen.get("host", DEFAULT_HOST)),
        listen_port=int(listen.get("port", DEFAULT_PORT)),
        api=ApiConfig(
            timeout_seconds=float(api.get("timeout_seconds", 10.0)),
            user_agent=str(api.get("user_agent", ApiConfig.user_agent)),
        ),
        classifier=classifier_config,
        audit_enabled=bool(audit.get("enabled", False)),
        audit_db_path=_relative_to_root(str(audit.get("db_path", "fedimod.db"))),
        logging=_section(config, "logging"),
        instances=instances,
    )


def load_settings(path: Optional[str] = None) -> Settings:
    """Read and validate the config file's process-wide sections."""

    path = resolve_config_path(path)
    return settings_from_dict(_load_json_config(path), path)


def load_registry(path: Optional[str] = None) -> TenantRegistry:
    """Read the config file and build a fresh tenant registry snapshot.

    Called at startup and again on every reload, so edits to rules only need
    a SIGHUP.
    """

    load_dotenv()
    settings = load_settings(path)
    return build_registry(settings.instances)
