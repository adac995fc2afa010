"""
Command-line interface for the DNS monitor.

This module provides the main CLI entry point with commands for:
- run: One monitoring tick over all configured domains
- watch: Run ticks on the configured cron schedule
- probe-cert: Resolve a domain and print the certificate of its first IP
- show-state: Print the stored record of a domain
- init-config: Write a default configuration file
- self-test: Validate the configuration and check connectivity

Configuration is read from a JSON file; secrets and the domain list can be
overlaid from the environment (a .env file is honored).
"""

import argparse
import asyncio
import dataclasses
import json
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Mapping, Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .cert_probe import CertificateProber
from .change_detector import ChangeDetector
from .config import (
    DEFAULT_CRON,
    DEFAULT_DOH_ENDPOINT,
    DEFAULT_HMAC_SECRET,
    DoHConfig,
    DomainConfig,
    LoggingConfig,
    PersistenceConfig,
    ProbeConfig,
    SystemConfig,
    TelegramConfig,
)
from .doh_client import DoHClient
from .domain_validator import DomainValidator
from .exceptions import DNSMonitorError, ConfigurationError, ValidationError
from .i18n import SUPPORTED_LANGUAGES, get_message
from .notifications import AlertDispatcher, AlertFormatter, TelegramChannel
from .orchestrator import MonitorOrchestrator, TickResult
from .scheduler import Scheduler
from .self_test import SelfTest, run_self_test
from .state_store import FileKeyValueStore, StateStore


DEFAULT_CONFIG_DIR = Path.home() / ".dns_monitor"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.json"
DEFAULT_STATE_PATH = DEFAULT_CONFIG_DIR / "state.json"


def _pick(data: Mapping, *keys: str, default=None):
    """Return the value of the first key present (snake_case or camelCase)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_domain_config(entry, validator: Optional[DomainValidator] = None) -> DomainConfig:
    """
    Build a DomainConfig from a JSON entry.

    An entry is either a bare domain name or an object using the snake_case
    or camelCase option names.

    Raises:
        ConfigurationError: If the entry or the domain name is invalid
    """
    validator = validator or DomainValidator()
    if isinstance(entry, str):
        entry = {"name": entry}
    if not isinstance(entry, dict):
        raise ConfigurationError(
            code="invalid_domain_entry",
            message=f"Domain entry must be a string or an object, got {type(entry).__name__}",
        )

    raw_name = _pick(entry, "name", "domain", default="")
    try:
        name = validator.canonicalize(str(raw_name))
    except ValidationError as e:
        raise ConfigurationError(
            code="invalid_domain",
            message=f"Invalid domain '{raw_name}': {e.message}",
            details=e.details,
        ) from e

    suppress_soa = _pick(entry, "suppress_non_ip_soa_alerts", "suppressNonIpSoaAlerts")
    window = _pick(entry, "critical_change_window_minutes", "criticalChangeWindowMinutes")
    try:
        window = float(window) if window is not None else None
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            code="invalid_domain_entry",
            message=f"Domain '{name}': critical change window must be a number",
        ) from e

    return DomainConfig(
        name=name,
        suppress_non_ip_soa_alerts=None if suppress_soa is None else bool(suppress_soa),
        suppress_cert_alerts=bool(_pick(entry, "suppress_cert_alerts", "suppressCertAlerts", default=False)),
        suppress_ip_change_alerts=bool(
            _pick(entry, "suppress_ip_change_alerts", "suppressIpChangeAlerts", default=False)
        ),
        critical_change_window_minutes=window,
    )


def config_from_dict(data: dict) -> SystemConfig:
    """
    Build a SystemConfig from decoded JSON.

    Raises:
        ConfigurationError: If a section has the wrong shape
    """
    if not isinstance(data, dict):
        raise ConfigurationError(code="invalid_config", message="Configuration must be a JSON object")

    validator = DomainValidator()
    domains = [parse_domain_config(entry, validator) for entry in data.get("domains") or []]

    telegram = None
    telegram_data = data.get("telegram") or {}
    bot_token = _pick(telegram_data, "bot_token", "botToken")
    chat_id = _pick(telegram_data, "chat_id", "chatId")
    if bot_token and chat_id:
        topic_id = _pick(telegram_data, "topic_id", "topicId")
        telegram = TelegramConfig(
            bot_token=str(bot_token),
            chat_id=str(chat_id),
            topic_id=str(topic_id) if topic_id is not None else None,
            api_base_url=_pick(telegram_data, "api_base_url", "apiBaseUrl", default="https://api.telegram.org"),
            timeout_seconds=float(_pick(telegram_data, "timeout_seconds", "timeoutSeconds", default=10.0)),
        )

    doh_data = data.get("doh") or {}
    doh = DoHConfig(
        endpoint=_pick(doh_data, "endpoint", default=DEFAULT_DOH_ENDPOINT),
        timeout_seconds=float(_pick(doh_data, "timeout_seconds", "timeoutSeconds", default=10.0)),
    )

    probe_data = data.get("probe") or {}
    probe = ProbeConfig(
        port=int(_pick(probe_data, "port", default=443)),
        timeout_seconds=float(_pick(probe_data, "timeout_seconds", "timeoutSeconds", default=5.0)),
    )

    persistence_data = data.get("persistence") or {}
    state_file_path = _pick(persistence_data, "state_file_path", "stateFilePath")
    persistence = PersistenceConfig(
        state_file_path=Path(state_file_path) if state_file_path else DEFAULT_STATE_PATH,
        hmac_secret=_pick(persistence_data, "hmac_secret", "hmacSecret", default=DEFAULT_HMAC_SECRET),
        key_prefix=_pick(persistence_data, "key_prefix", "keyPrefix", default="dns:"),
    )

    logging_data = data.get("logging") or {}
    logging_config = LoggingConfig(
        level=logging_data.get("level", "info"),
        audit_mode=bool(_pick(logging_data, "audit_mode", "auditMode", default=False)),
        audit_signing_key=_pick(logging_data, "audit_signing_key", "auditSigningKey"),
        output_format=_pick(logging_data, "output_format", "outputFormat", default="text"),
    )

    return SystemConfig(
        domains=domains,
        telegram=telegram,
        persistence=persistence,
        doh=doh,
        probe=probe,
        logging=logging_config,
        cron=data.get("cron") or DEFAULT_CRON,
        max_concurrency=int(_pick(data, "max_concurrency", "maxConcurrency", default=5)),
        language=data.get("language", "en"),
        simulation_mode=bool(_pick(data, "simulation_mode", "simulationMode", default=False)),
        startup_self_test=bool(_pick(data, "startup_self_test", "startupSelfTest", default=False)),
    )


def load_config_from_file(config_path: Path) -> SystemConfig:
    """
    Load configuration from a JSON file.

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            code="config_not_found",
            message=f"Configuration file not found: {config_path}",
        ) from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            code="config_unreadable",
            message=f"Error loading config: {e}",
            details={"path": str(config_path)},
        ) from e

    try:
        return config_from_dict(data)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            code="invalid_config",
            message=f"Invalid configuration: {e}",
            details={"path": str(config_path)},
        ) from e


def apply_environment(
    config: SystemConfig,
    environ: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[Path] = None,
) -> SystemConfig:
    """
    Overlay secrets and the domain list from the environment.

    Recognized variables: TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID,
    TELEGRAM_TOPIC_ID, DNS_MONITOR_HMAC_SECRET and MONITOR_DOMAINS (comma
    separated; configured domains keep their settings).

    When ``environ`` is None the process environment is used, after loading
    a .env file without overriding variables that are already set.
    """
    if environ is None:
        load_dotenv(dotenv_path)
        environ = os.environ

    def env(name: str) -> Optional[str]:
        value = (environ.get(name) or "").strip()
        return value or None

    telegram = config.telegram
    bot_token = env("TELEGRAM_BOT_TOKEN")
    chat_id = env("TELEGRAM_CHAT_ID")
    topic_id = env("TELEGRAM_TOPIC_ID")
    if telegram is not None:
        telegram = dataclasses.replace(
            telegram,
            bot_token=bot_token or telegram.bot_token,
            chat_id=chat_id or telegram.chat_id,
            topic_id=topic_id or telegram.topic_id,
        )
    elif bot_token and chat_id:
        telegram = TelegramConfig(bot_token=bot_token, chat_id=chat_id, topic_id=topic_id)

    persistence = config.persistence
    hmac_secret = env("DNS_MONITOR_HMAC_SECRET")
    if hmac_secret:
        persistence = dataclasses.replace(persistence, hmac_secret=hmac_secret)

    domains = config.domains
    monitor_domains = env("MONITOR_DOMAINS")
    if monitor_domains:
        validator = DomainValidator()
        domains = []
        for raw in monitor_domains.split(","):
            if not raw.strip():
                continue
            entry = parse_domain_config(raw, validator)
            domains.append(config.get_domain(entry.name) or entry)

    return dataclasses.replace(
        config, telegram=telegram, persistence=persistence, domains=domains
    )


def validate_config(config: SystemConfig) -> list[str]:
    """
    Validate a configuration before any domain is processed.

    Returns:
        Warnings that do not prevent running

    Raises:
        ConfigurationError: If credentials or domains are missing or invalid
    """
    result = SelfTest(config).validate_config()
    if not result.valid:
        raise ConfigurationError(
            code="invalid_config",
            message="; ".join(result.errors),
            details={"errors": result.errors},
        )
    return result.warnings


def create_default_config(
    simulation_mode: bool = False,
    language: str = "en",
    state_file: Optional[Path] = None,
    hmac_secret: str = DEFAULT_HMAC_SECRET,
) -> SystemConfig:
    """Create a default system configuration with one example domain."""
    return SystemConfig(
        domains=[DomainConfig(name="example.com", critical_change_window_minutes=5)],
        telegram=None,
        persistence=PersistenceConfig(
            state_file_path=state_file or DEFAULT_STATE_PATH,
            hmac_secret=hmac_secret,
        ),
        language=language,
        simulation_mode=simulation_mode,
    )


def config_to_dict(config: SystemConfig) -> dict:
    """Serialize a configuration in the format read by load_config_from_file."""
    data = {
        "domains": [
            {
                key: value
                for key, value in {
                    "name": domain.name,
                    "suppress_non_ip_soa_alerts": domain.suppress_non_ip_soa_alerts,
                    "suppress_cert_alerts": domain.suppress_cert_alerts,
                    "suppress_ip_change_alerts": domain.suppress_ip_change_alerts,
                    "critical_change_window_minutes": domain.critical_change_window_minutes,
                }.items()
                if value is not None
            }
            for domain in config.domains
        ],
        "cron": config.cron,
        "doh": {
            "endpoint": config.doh.endpoint,
            "timeout_seconds": config.doh.timeout_seconds,
        },
        "probe": {
            "port": config.probe.port,
            "timeout_seconds": config.probe.timeout_seconds,
        },
        "persistence": {
            "state_file_path": str(config.persistence.state_file_path),
            "hmac_secret": config.persistence.hmac_secret,
            "key_prefix": config.persistence.key_prefix,
        },
        "logging": {
            "level": config.logging.level,
            "audit_mode": config.logging.audit_mode,
            "audit_signing_key": config.logging.audit_signing_key,
            "output_format": config.logging.output_format,
        },
        "max_concurrency": config.max_concurrency,
        "language": config.language,
        "simulation_mode": config.simulation_mode,
        "startup_self_test": config.startup_self_test,
    }
    if config.telegram is not None:
        data["telegram"] = {
            "bot_token": config.telegram.bot_token,
            "chat_id": config.telegram.chat_id,
            "topic_id": config.telegram.topic_id,
        }
    return data


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """Save configuration to a JSON file; returns False on I/O errors."""
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
        return True
    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def create_logger(config: SystemConfig, verbose: bool = False) -> AuditLogger:
    logging_config = config.logging
    if verbose:
        logging_config = dataclasses.replace(logging_config, level="debug")
    return AuditLogger.from_config(logging_config)


def create_state_store(config: SystemConfig) -> StateStore:
    backend = FileKeyValueStore(
        config.persistence.state_file_path,
        config.persistence.hmac_secret,
    )
    return StateStore(backend, key_prefix=config.persistence.key_prefix)


@asynccontextmanager
async def build_monitor(
    config: SystemConfig, logger: Optional[AuditLogger] = None
) -> AsyncIterator[MonitorOrchestrator]:
    """Wire the orchestrator with its real network collaborators."""
    channel = None
    if config.telegram is not None:
        channel = TelegramChannel(config.telegram)
    dispatcher = AlertDispatcher(
        channel,
        AlertFormatter(config.language),
        logger=logger,
        simulation_mode=config.simulation_mode,
    )
    prober = CertificateProber(
        port=config.probe.port, timeout=config.probe.timeout_seconds
    )
    async with DoHClient(config.doh.endpoint, timeout=config.doh.timeout_seconds) as doh_client:
        yield MonitorOrchestrator(
            config=config,
            state_store=create_state_store(config),
            doh_client=doh_client,
            prober=prober,
            dispatcher=dispatcher,
            logger=logger,
            detector=ChangeDetector(),
        )


def print_tick(tick: TickResult, language: str) -> None:
    """Print one line per domain and a summary."""
    for result in tick.results:
        if result.skipped:
            print(get_message("cli.domain_skipped", language, domain=result.domain))
        elif not result.success:
            print(get_message(
                "cli.domain_failed", language,
                domain=result.domain, error="; ".join(result.errors),
            ))
        elif result.initialized:
            print(get_message("cli.domain_initialized", language, domain=result.domain))
        elif result.events:
            print(get_message(
                "cli.domain_events", language,
                domain=result.domain,
                events=", ".join(event.kind.value for event in result.events),
            ))
        else:
            print(get_message("cli.domain_no_changes", language, domain=result.domain))

    print(get_message(
        "cli.summary", language,
        checked=tick.checked, events=tick.event_count, failed=len(tick.failed),
    ))


def prepare_config(args: argparse.Namespace) -> SystemConfig:
    """
    Load the configuration for a command and apply command-line overrides.

    Raises:
        ConfigurationError: If an explicitly given config file cannot be loaded
    """
    if args.config:
        config = load_config_from_file(Path(args.config))
    elif DEFAULT_CONFIG_PATH.exists():
        config = load_config_from_file(DEFAULT_CONFIG_PATH)
    else:
        config = create_default_config()

    config = apply_environment(config)
    if args.dry_run:
        config = dataclasses.replace(config, simulation_mode=True)
    if args.language:
        config = dataclasses.replace(config, language=args.language)
    return config


async def run_once(config: SystemConfig, logger: AuditLogger) -> int:
    """Run a single tick; exit code 1 if any domain failed."""
    if config.simulation_mode:
        print(get_message("simulation.enabled", config.language))
    print(get_message("cli.tick_started", config.language, count=len(config.domains)))
    async with build_monitor(config, logger) as orchestrator:
        tick = await orchestrator.run_tick()
    print_tick(tick, config.language)
    return 0 if tick.success else 1


async def watch(config: SystemConfig, logger: AuditLogger, stop_event: Optional[asyncio.Event] = None) -> int:
    """Run ticks on the cron schedule until stopped."""
    if config.startup_self_test:
        result = await run_self_test(config, print_output=True, language=config.language)
        if not result.success:
            return 1

    if config.simulation_mode:
        print(get_message("simulation.enabled", config.language))
    print(get_message(
        "cli.watch_started", config.language, count=len(config.domains), cron=config.cron
    ))

    async with build_monitor(config, logger) as orchestrator:
        async def tick() -> None:
            print_tick(await orchestrator.run_tick(), config.language)

        scheduler = Scheduler(config.cron, tick, logger=logger)
        await scheduler.run(stop_event)
    return 0


async def probe_certificate(domain: str, config: SystemConfig) -> int:
    """Resolve a domain, probe its first IP and compare with the stored baseline."""
    language = config.language
    async with DoHClient(config.doh.endpoint, timeout=config.doh.timeout_seconds) as doh_client:
        snapshot = await doh_client.snapshot(domain)

    print(f"Current IPs: {', '.join(snapshot.ips) or '-'}")
    target = ChangeDetector.probe_target(snapshot)
    if target is None:
        print(get_message("cli.no_ips", language, domain=domain))
        return 1

    prober = CertificateProber(port=config.probe.port, timeout=config.probe.timeout_seconds)
    result = await prober.probe(domain, target)
    if result.failed:
        print(f"{get_message('label.error', language)}: {result.error}")
        return 1

    cert = result.certificate
    print(f"\n{get_message('label.current_certificate', language)} ({target}):")
    for label, value in (
        ("label.issuer", cert.issuer),
        ("label.subject", cert.subject),
        ("label.valid_from", cert.valid_from),
        ("label.valid_to", cert.valid_to),
        ("label.fingerprint", cert.fingerprint),
    ):
        print(f"  {get_message(label, language)}: {value}")

    state = create_state_store(config).load(domain)
    baseline = state.baseline_cert if state else None
    if baseline is None:
        print(f"\n{get_message('label.previous_certificate', language)}: "
              f"{get_message('label.none_recorded', language)}")
    else:
        marker = "✓" if cert.same_as(baseline) else "✗"
        print(f"\n{marker} {get_message('label.previous_certificate', language)}: {baseline.fingerprint}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    config = prepare_config(args)
    validate_config(config)
    logger = create_logger(config, args.verbose)
    if config.startup_self_test:
        result = asyncio.run(run_self_test(config, print_output=True, language=config.language))
        if not result.success:
            return 1
    return asyncio.run(run_once(config, logger))


def cmd_watch(args: argparse.Namespace) -> int:
    """Handle the 'watch' command."""
    config = prepare_config(args)
    validate_config(config)
    logger = create_logger(config, args.verbose)
    try:
        return asyncio.run(watch(config, logger))
    except KeyboardInterrupt:
        return 0


def cmd_probe_cert(args: argparse.Namespace) -> int:
    """Handle the 'probe-cert' command."""
    config = prepare_config(args)
    domain = DomainValidator().canonicalize(args.domain)
    return asyncio.run(probe_certificate(domain, config))


def cmd_show_state(args: argparse.Namespace) -> int:
    """Handle the 'show-state' command."""
    config = prepare_config(args)
    domain = DomainValidator().canonicalize(args.domain)
    store = create_state_store(config)
    raw = store.load_raw(domain)
    if raw is None:
        print(get_message("cli.no_state", config.language, domain=domain))
        return 1
    print(f"{store.key_for(domain)}:")
    print(json.dumps(json.loads(raw), indent=2, sort_keys=True, ensure_ascii=False))
    return 0


def cmd_init_config(args: argparse.Namespace) -> int:
    """Handle the 'init-config' command."""
    config_path = Path(args.path)
    if config_path.exists() and not args.force:
        print(f"Configuration already exists at: {config_path}")
        print("Use --force to overwrite.")
        return 1

    config = create_default_config(language=args.language or "en")
    if save_config_to_file(config, config_path):
        print(f"Configuration created at: {config_path}")
        return 0
    return 1


def cmd_self_test(args: argparse.Namespace) -> int:
    """Handle the 'self-test' command."""
    config = prepare_config(args)
    result = asyncio.run(run_self_test(config, print_output=True, language=config.language))
    return 0 if result.success else 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config", "-c",
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    common.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulation mode - alerts are logged, not sent; state is not written",
    )
    common.add_argument(
        "--language", "-l",
        choices=sorted(SUPPORTED_LANGUAGES),
        default=None,
        help="Output language (default: from configuration)",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    parser = argparse.ArgumentParser(
        prog="dns-monitor",
        description="DNS and TLS posture monitor with Telegram alerts",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run", parents=[common], help="Check all configured domains once",
    )
    run_parser.set_defaults(func=cmd_run)

    watch_parser = subparsers.add_parser(
        "watch", parents=[common], help="Check domains on the configured cron schedule",
    )
    watch_parser.set_defaults(func=cmd_watch)

    probe_parser = subparsers.add_parser(
        "probe-cert", parents=[common], help="Print the TLS certificate served for a domain",
    )
    probe_parser.add_argument("domain", help="Domain to probe (e.g., example.com)")
    probe_parser.set_defaults(func=cmd_probe_cert)

    state_parser = subparsers.add_parser(
        "show-state", parents=[common], help="Print the stored state of a domain",
    )
    state_parser.add_argument("domain", help="Monitored domain")
    state_parser.set_defaults(func=cmd_show_state)

    init_parser = subparsers.add_parser(
        "init-config", parents=[common], help="Write a default configuration file",
    )
    init_parser.add_argument("path", help="Where to write the configuration")
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite an existing configuration",
    )
    init_parser.set_defaults(func=cmd_init_config)

    self_test_parser = subparsers.add_parser(
        "self-test", parents=[common], help="Validate configuration and check connectivity",
    )
    self_test_parser.set_defaults(func=cmd_self_test)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except DNSMonitorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
