"""Application entry point for the fedimod webhook service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

import httpx
import uvicorn
from art import tprint
from dotenv import load_dotenv

from fedimod import settings as settings_module
from fedimod.adapters.mastodon_api import MastodonClientPool
from fedimod.adapters.rspamd_classifier import RspamdClassifier
from fedimod.adapters.sqlite_audit import SQLiteAuditLog
from fedimod.core.errors import ConfigError
from fedimod.core.intake import WebhookIntake
from fedimod.core.processor import EventProcessor
from fedimod.core.registry import RegistryHolder, TenantRegistry
from fedimod.server import create_app
from fedimod.settings import Settings

NAME = "FEDIMOD"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    """Masks webhook secrets and access tokens in every rendered record."""

    def __init__(self, secrets: Iterable[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._masked: list[str] = []
        self.add_secrets(secrets)

    def add_secrets(self, secrets: Iterable[str]) -> None:
        known = set(self._masked)
        known.update(value for value in secrets if value)
        # Longest first so a secret containing another is masked whole.
        self._masked = sorted(known, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        for value in self._masked:
            if value in text:
                text = text.replace(value, "***")
        return text


def _env_secrets(names: Iterable[str]) -> list[str]:
    """Values of the extra environment variables listed under ``redact_env``."""

    return [os.environ[name] for name in names if os.environ.get(name)]


def _log_handlers(config: dict, level: int) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())

    rotating = config.get("file") or {}
    if rotating.get("enabled", False):
        log_path = rotating.get("path", "logs/fedimod.log")
        if not os.path.isabs(log_path):
            log_path = os.path.join(settings_module.PROJECT_ROOT, log_path)
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_path,
                maxBytes=int(rotating.get("max_bytes", 5 * 1024 * 1024)),
                backupCount=int(rotating.get("backup_count", 5)),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def _configure_logging(settings: Settings, secrets: Iterable[str]) -> Optional[_RedactingFormatter]:
    """Install root handlers from the ``logging`` section; returns the shared formatter."""

    config = settings.logging or {}
    if not config.get("enabled", True):
        return None

    level = logging.getLevelName(str(config.get("level", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    handlers = _log_handlers(config, level)
    if not handlers:
        return None

    formatter = _RedactingFormatter(
        list(secrets) + _env_secrets(config.get("redact_env", [])),
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers, force=True)
    return formatter


def _load(config_path: Optional[str]) -> tuple[Settings, TenantRegistry]:
    load_dotenv()
    settings = settings_module.load_settings(config_path)
    registry = settings_module.load_registry(settings.path)
    return settings, registry


async def _verify_bots(registry: TenantRegistry, pool: MastodonClientPool) -> None:
    """Fail fast on bad credentials before the first event arrives."""

    for instance in registry.instances.values():
        for bot in instance.bots.values():
            account = await pool.for_bot(bot).verify_credentials()
            LOGGER.info("Authenticated with %s@%s", account.get("username", bot.username), bot.domain)


async def _serve_async(
    settings: Settings,
    holder: RegistryHolder,
    formatter: Optional[_RedactingFormatter],
    verify_credentials: bool,
) -> None:
    pool = MastodonClientPool(settings.api)
    classifier = RspamdClassifier(settings.classifier) if settings.classifier else None

    audit = None
    if settings.audit_enabled:
        audit = SQLiteAuditLog(settings.audit_db_path)
        audit.init_db()

    if verify_credentials:
        await _verify_bots(holder.current(), pool)

    processor = EventProcessor(
        api_factory=pool.for_bot,
        audit=audit,
        classifier=classifier,
        api_timeout=settings.api.timeout_seconds,
        classifier_timeout=settings.classifier.timeout_seconds if settings.classifier else None,
    )
    intake = WebhookIntake(holder, processor)
    hooks = [pool.aclose]
    if classifier is not None:
        hooks.append(classifier.aclose)
    app = create_app(intake, on_shutdown=hooks)

    def _reload() -> None:
        try:
            registry = holder.reload(lambda: settings_module.load_registry(settings.path))
        except (ConfigError, FileNotFoundError):
            LOGGER.exception("Reload failed; keeping the previous configuration")
            return
        if formatter is not None:
            formatter.add_secrets(registry.secrets())

    # SIGHUP only exists on POSIX platforms.
    if hasattr(signal, "SIGHUP"):
        asyncio.get_running_loop().add_signal_handler(signal.SIGHUP, _reload)

    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.listen_host, port=settings.listen_port, log_config=None)
    )
    LOGGER.info("Listening on %s:%s", settings.listen_host, settings.listen_port)
    await server.serve()


def _serve(config_path: Optional[str], verify_credentials: bool) -> None:
    _print_banner()
    settings, registry = _load(config_path)
    formatter = _configure_logging(settings, registry.secrets())

    bot_count = sum(len(instance.bots) for instance in registry.instances.values())
    LOGGER.info("Starting fedimod: %s instances, %s bot accounts", len(registry.instances), bot_count)
    asyncio.run(_serve_async(settings, RegistryHolder(registry), formatter, verify_credentials))


def _healthcheck(config_path: Optional[str]) -> int:
    """Call our own health check endpoint; suitable for container probes."""

    settings = settings_module.load_settings(config_path)
    host = settings.listen_host
    if host in {"0.0.0.0", "::", ""}:
        host = "127.0.0.1"
    url = f"http://{host}:{settings.listen_port}/healthcheck"
    try:
        response = httpx.get(url, timeout=5.0)
    except httpx.HTTPError as exc:
        print(f"Health check request failed: {exc}", file=sys.stderr)
        return 1
    if not response.is_success:
        print(f"Health check request failed: {response.status_code}", file=sys.stderr)
        return 1
    return 0


def _check_config(config_path: Optional[str]) -> int:
    """Validate the config file and print what would be loaded."""

    try:
        _, registry = _load(config_path)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1
    for instance in registry.instances.values():
        for bot in instance.bots.values():
            print(f"{bot.username}@{bot.domain}: {len(bot.rules)} rules")
            for rule in bot.rules:
                effects = []
                if rule.report is not None:
                    effects.append("report")
                if rule.restrict is not None:
                    effects.append(rule.restrict.value)
                print(f"  - {rule.name} ({len(rule.patterns)} patterns; {', '.join(effects)})")
    return 0


def _show_audit(config_path: Optional[str], limit: int) -> int:
    settings = settings_module.load_settings(config_path)
    if not os.path.exists(settings.audit_db_path):
        print(f"No audit database at {settings.audit_db_path}", file=sys.stderr)
        return 1
    for row in SQLiteAuditLog(settings.audit_db_path).recent(limit):
        restrict = ""
        if row["restrict_kind"]:
            restrict = f" {row['restrict_kind']}={row['restrict_status']}"
            if row["cited_report_id"]:
                restrict += f" citing {row['cited_report_id']}"
        report = f" report={row['report_status']}:{row['report_id']}" if row["report_status"] else ""
        print(
            f"[{row['created_at']}] {row['username']}@{row['domain']} "
            f"event={row['event_id']} rule={row['rule_name']}{report}{restrict}"
        )
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="fedimod")
    parser.add_argument("-c", "--config", help="Path to config.json (default: $FEDIMOD_CONFIG or ./config.json)")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the webhook server")
    serve_parser.add_argument(
        "--skip-verify",
        action="store_true",
        help="Do not check bot credentials against the instances at startup",
    )
    subparsers.add_parser("healthcheck", help="Call the running server's health check endpoint")
    subparsers.add_parser("check-config", help="Validate the config file and list loaded rules")
    audit_parser = subparsers.add_parser("audit", help="Show recent rule outcomes from the audit log")
    audit_parser.add_argument("-n", "--limit", type=int, default=20)

    args = parser.parse_args(argv)
    if args.command == "healthcheck":
        sys.exit(_healthcheck(args.config))
    if args.command == "check-config":
        sys.exit(_check_config(args.config))
    if args.command == "audit":
        sys.exit(_show_audit(args.config, args.limit))
    _serve(args.config, verify_credentials=not getattr(args, "skip_verify", False))


if __name__ == "__main__":
    main()
