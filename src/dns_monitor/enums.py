"""
Enumeration types for the DNS monitor.

These enums provide type-safe constants for lifecycle states, change event
kinds and error codes throughout the system.
"""

from enum import Enum


class DomainStatus(Enum):
    """Lifecycle status of a monitored domain."""

    UNINITIALIZED = "uninitialized"
    NO_AUTHORITY = "no_authority"
    RESOLVED = "resolved"


class EventKind(Enum):
    """Kinds of change events produced by the change detector."""

    AUTHORITY_LOST = "authority_lost"
    CERTIFICATE_VALIDATION_ERROR = "certificate_validation_error"
    CERTIFICATE_CHANGED = "certificate_changed"
    IP_CHANGED = "ip_changed"
    SOA_UPDATED = "soa_updated"
    CRITICAL_CONCURRENT_CHANGE = "critical_concurrent_change"


class Severity(Enum):
    """Alert severity attached to each event kind."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class DNSRecordType(Enum):
    """DNS record types understood by the DoH client (numeric RR type)."""

    A = 1
    SOA = 6


class DNSErrorCode(Enum):
    """Error codes for DNS-over-HTTPS lookups."""

    NETWORK_ERROR = "network_error"
    TLS_ERROR = "tls_error"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"
    RESPONSE_ERROR = "response_error"


class ProbeErrorCode(Enum):
    """Error codes for TLS certificate probes."""

    TIMEOUT = "timeout"
    TLS_ERROR = "tls_error"
    CONNECTION_ERROR = "connection_error"
    NO_CERTIFICATE = "no_certificate"


class DomainValidationErrorCode(Enum):
    """Error codes for domain validation failures."""

    FORBIDDEN_CHARS = "forbidden_chars"
    INVALID_LABEL = "invalid_label"
    IDNA_ERROR = "idna_error"
    EMPTY_INPUT = "empty_input"
