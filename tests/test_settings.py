from __future__ import annotations

import json
import os

import pytest

from fedimod import settings as settings_module
from fedimod.core.errors import ConfigError
from fedimod.settings import load_registry, load_settings, resolve_config_path, settings_from_dict


def _write(tmp_path, data) -> str:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return str(path)


def test_defaults_for_empty_config() -> None:
    settings = settings_from_dict({})

    assert settings.listen_host == "127.0.0.1"
    assert settings.listen_port == 1337
    assert settings.api.timeout_seconds == 10.0
    assert settings.classifier is None
    assert settings.audit_enabled is False
    assert settings.instances == []


def test_sections_are_read() -> None:
    settings = settings_from_dict(
        {
            "listen": {"host": "0.0.0.0", "port": 8080},
            "api": {"timeout_seconds": 3, "user_agent": "mod/1.0"},
            "classifier": {"url": "http://rspamd:11334", "timeout_seconds": 2},
            "audit": {"enabled": True, "db_path": "/var/lib/fedimod/audit.db"},
        }
    )

    assert settings.listen_port == 8080
    assert settings.api.user_agent == "mod/1.0"
    assert settings.classifier.url == "http://rspamd:11334"
    assert settings.classifier.timeout_seconds == 2.0
    assert settings.audit_db_path == "/var/lib/fedimod/audit.db"


def test_section_must_be_object() -> None:
    with pytest.raises(ConfigError, match="listen must be an object"):
        settings_from_dict({"listen": [1, 2]})


def test_config_path_resolution(monkeypatch) -> None:
    monkeypatch.setenv(settings_module.CONFIG_ENV_VAR, "/etc/fedimod.json")

    assert resolve_config_path("explicit.json") == "explicit.json"
    assert resolve_config_path() == "/etc/fedimod.json"

    monkeypatch.delenv(settings_module.CONFIG_ENV_VAR)
    assert resolve_config_path() == settings_module.DEFAULT_CONFIG_PATH


def test_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "absent.json"))


def test_invalid_json_names_file(tmp_path) -> None:
    path = _write(tmp_path, "{not json")

    with pytest.raises(ConfigError) as excinfo:
        load_settings(path)

    assert str(excinfo.value).startswith(path)


def test_load_registry_reads_secrets_from_env(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("TEST_FEDIMOD_HOOK", "hook-secret")
    path = _write(
        tmp_path,
        {
            "instances": [
                {
                    "domain": "example.social",
                    "webhook_secret_env": "TEST_FEDIMOD_HOOK",
                    "bots": [{"username": "automod", "access_token": "tok"}],
                }
            ]
        },
    )

    registry = load_registry(path)

    assert registry.instance("example.social").webhook_secret == "hook-secret"


def test_example_config_is_valid(monkeypatch) -> None:
    example = os.path.join(os.path.dirname(__file__), "..", "config.example.json")
    with open(example, encoding="utf-8") as handle:
        data = json.load(handle)
    for instance in data["instances"]:
        if "webhook_secret_env" in instance:
            monkeypatch.setenv(instance["webhook_secret_env"], "x")
        for bot in instance["bots"]:
            if "access_token_env" in bot:
                monkeypatch.setenv(bot["access_token_env"], "y")

    registry = load_registry(example)

    assert registry.instances
