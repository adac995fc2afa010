"""
Configuration dataclasses for the DNS monitor.

This module defines the per-domain monitoring settings and the process-wide
configuration (secrets, DNS-over-HTTPS endpoint, TLS probe, persistence,
logging and scheduling). Configuration is loaded once at start-up and is
never mutated by the change detector.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


DEFAULT_DOH_ENDPOINT = "https://cloudflare-dns.com/dns-query"
DEFAULT_CRON = "*/5 * * * *"
DEFAULT_HMAC_SECRET = "default-secret-change-me"


@dataclass(frozen=True)
class DomainConfig:
    """Monitoring settings for a single domain."""

    name: str
    # None means "not configured", which suppresses SOA-only alerts
    suppress_non_ip_soa_alerts: Optional[bool] = None
    suppress_cert_alerts: bool = False
    suppress_ip_change_alerts: bool = False
    critical_change_window_minutes: Optional[float] = None

    @property
    def soa_alerts_suppressed(self) -> bool:
        return self.suppress_non_ip_soa_alerts is not False


@dataclass
class TelegramConfig:
    """Telegram bot credentials."""

    bot_token: str
    chat_id: str
    topic_id: Optional[str] = None
    api_base_url: str = "https://api.telegram.org"
    timeout_seconds: float = 10.0


@dataclass
class DoHConfig:
    """DNS-over-HTTPS lookup service settings."""

    endpoint: str = DEFAULT_DOH_ENDPOINT
    timeout_seconds: float = 10.0


@dataclass
class ProbeConfig:
    """TLS certificate probe settings."""

    port: int = 443
    timeout_seconds: float = 5.0


@dataclass
class PersistenceConfig:
    """Persistence and state storage configuration."""

    state_file_path: Path
    hmac_secret: str
    key_prefix: str = "dns:"


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    domains: list[DomainConfig]
    telegram: Optional[TelegramConfig]
    persistence: PersistenceConfig
    doh: DoHConfig = field(default_factory=DoHConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    cron: str = DEFAULT_CRON
    max_concurrency: int = 5
    language: str = "en"  # 'de' or 'en'
    simulation_mode: bool = False
    startup_self_test: bool = False

    def get_domain(self, name: str) -> Optional[DomainConfig]:
        """Look up the configuration of a domain by (canonical) name."""
        wanted = name.strip().lower().rstrip(".")
        for domain in self.domains:
            if domain.name == wanted:
                return domain
        return None
