"""
DNS Monitor - DNS and TLS posture monitoring with Telegram alerts.

This package periodically resolves a list of domains over DNS-over-HTTPS,
probes the TLS certificate served by each domain, compares the observation
with the persisted state and alerts on authority loss, IP changes, zone
updates, certificate changes and concurrent IP and certificate changes.
"""

__version__ = "0.1.0"

from dns_monitor.exceptions import (
    DNSMonitorError,
    ValidationError,
    TransportError,
    NotificationError,
    MalformedUpstreamDataError,
    CertificateProbeError,
    ConfigurationError,
    PersistenceError,
    TamperingError,
)
from dns_monitor.enums import (
    DomainStatus,
    EventKind,
    Severity,
    LogLevel,
    DNSRecordType,
    DNSErrorCode,
    ProbeErrorCode,
    DomainValidationErrorCode,
)
from dns_monitor.domain_validator import (
    DomainValidator,
    DomainValidationResult,
    DomainValidationError,
)
from dns_monitor.config import (
    DomainConfig,
    TelegramConfig,
    DoHConfig,
    ProbeConfig,
    PersistenceConfig,
    LoggingConfig,
    SystemConfig,
)
from dns_monitor.models import (
    CertificateInfo,
    SOARecord,
    DNSSnapshot,
    CertProbeResult,
    DomainState,
    AuthorityLost,
    CertificateValidationError,
    CertificateChanged,
    IpChanged,
    SoaUpdated,
    CriticalConcurrentChange,
    ChangeEvent,
    DetectionResult,
    DomainCheckResult,
)
from dns_monitor.change_detector import ChangeDetector
from dns_monitor.doh_client import DoHClient
from dns_monitor.cert_probe import CertificateProber
from dns_monitor.state_store import (
    KeyValueStore,
    MemoryKeyValueStore,
    FileKeyValueStore,
    StateStore,
)
from dns_monitor.audit_logger import AuditLogger, LogEntry
from dns_monitor.notifications import (
    AlertFormatter,
    AlertDispatcher,
    DispatchResult,
    NotificationChannel,
    TelegramChannel,
)
from dns_monitor.i18n import (
    get_message,
    get_all_message_keys,
    has_translation,
    get_missing_translations,
    validate_translations,
    TRANSLATIONS,
    SUPPORTED_LANGUAGES,
    DEFAULT_LANGUAGE,
)
from dns_monitor.scheduler import (
    Scheduler,
    CronSchedule,
    CronField,
    CronParser,
    CronParseError,
)
from dns_monitor.orchestrator import (
    DomainLockRegistry,
    MonitorOrchestrator,
    TickResult,
)
from dns_monitor.self_test import (
    SelfTest,
    SelfTestResult,
    EndpointTestResult,
    ConfigValidationResult,
    run_self_test,
)
from dns_monitor.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
    apply_environment,
    validate_config,
)

__all__ = [
    # Version
    "__version__",
    # Exceptions
    "DNSMonitorError",
    "ValidationError",
    "TransportError",
    "NotificationError",
    "MalformedUpstreamDataError",
    "CertificateProbeError",
    "ConfigurationError",
    "PersistenceError",
    "TamperingError",
    # Enums
    "DomainStatus",
    "EventKind",
    "Severity",
    "LogLevel",
    "DNSRecordType",
    "DNSErrorCode",
    "ProbeErrorCode",
    "DomainValidationErrorCode",
    # Domain Validator
    "DomainValidator",
    "DomainValidationResult",
    "DomainValidationError",
    # Config
    "DomainConfig",
    "TelegramConfig",
    "DoHConfig",
    "ProbeConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "SystemConfig",
    # Models
    "CertificateInfo",
    "SOARecord",
    "DNSSnapshot",
    "CertProbeResult",
    "DomainState",
    "AuthorityLost",
    "CertificateValidationError",
    "CertificateChanged",
    "IpChanged",
    "SoaUpdated",
    "CriticalConcurrentChange",
    "ChangeEvent",
    "DetectionResult",
    "DomainCheckResult",
    # Core
    "ChangeDetector",
    "DoHClient",
    "CertificateProber",
    # State Store
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "StateStore",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Notifications
    "AlertFormatter",
    "AlertDispatcher",
    "DispatchResult",
    "NotificationChannel",
    "TelegramChannel",
    # I18n
    "get_message",
    "get_all_message_keys",
    "has_translation",
    "get_missing_translations",
    "validate_translations",
    "TRANSLATIONS",
    "SUPPORTED_LANGUAGES",
    "DEFAULT_LANGUAGE",
    # Scheduler
    "Scheduler",
    "CronSchedule",
    "CronField",
    "CronParser",
    "CronParseError",
    # Orchestrator
    "DomainLockRegistry",
    "MonitorOrchestrator",
    "TickResult",
    # Self-Test
    "SelfTest",
    "SelfTestResult",
    "EndpointTestResult",
    "ConfigValidationResult",
    "run_self_test",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
    "apply_environment",
    "validate_config",
]
