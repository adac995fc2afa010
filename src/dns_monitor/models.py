"""
Data models for the DNS monitor.

This module defines the DNS and certificate observations, the persisted
per-domain state, and the closed set of change events produced by the
change detector.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Iterable, Optional, Union

from dns_monitor.enums import DomainStatus, EventKind, Severity


UNKNOWN = "unknown"


def utc_isoformat(dt: datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 timestamp; None and garbage yield None."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_ips(ips: Iterable[str]) -> list[str]:
    """Return IPs sorted and deduplicated."""
    return sorted({ip.strip() for ip in ips if ip and ip.strip()})


@dataclass(frozen=True)
class CertificateInfo:
    """Peer certificate as seen by the TLS probe."""

    issuer: str
    subject: str
    valid_from: str
    valid_to: str
    fingerprint: str  # SHA-256 over DER, colon separated

    def same_as(self, other: Optional["CertificateInfo"]) -> bool:
        """Two certificates are the same iff their fingerprints match."""
        return other is not None and self.fingerprint == other.fingerprint


@dataclass(frozen=True)
class SOARecord:
    """Start-of-authority fields; missing fields render as 'unknown'."""

    primary_ns: str = UNKNOWN
    admin_email: str = UNKNOWN
    serial: str = UNKNOWN
    refresh: str = UNKNOWN
    retry: str = UNKNOWN
    expire: str = UNKNOWN
    minimum_ttl: str = UNKNOWN

    @classmethod
    def from_rdata(cls, data: str) -> "SOARecord":
        """
        Build an SOA record from its presentation format.

        'ns1.example.com. hostmaster.example.com. 2024010101 7200 3600 1209600 300'
        """
        parts = (data or "").split()
        if len(parts) < 7:
            # Only the serial position is trusted from a short answer
            serial = parts[2] if len(parts) >= 3 else UNKNOWN
            return cls(serial=serial)
        return cls(*parts[:7])


@dataclass(frozen=True)
class DNSSnapshot:
    """Normalized view of one DNS-over-HTTPS observation."""

    status: int
    ips: tuple[str, ...] = ()
    soa: Optional[SOARecord] = None
    no_authority: bool = False
    comments: tuple[str, ...] = ()

    @property
    def serial(self) -> Optional[str]:
        """SOA serial, or None when no SOA answer was present."""
        if self.soa is None or self.soa.serial == UNKNOWN:
            return None
        return self.soa.serial


@dataclass(frozen=True)
class CertProbeResult:
    """Outcome of a certificate probe: a certificate or an error message."""

    certificate: Optional[CertificateInfo] = None
    error: Optional[str] = None
    target_ip: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None or self.certificate is None


@dataclass
class DomainState:
    """Persistent state for a single monitored domain."""

    status: DomainStatus = DomainStatus.UNINITIALIZED
    ips: list[str] = field(default_factory=list)
    serial: Optional[str] = None
    last_ip_change: Optional[str] = None
    last_cert_change: Optional[str] = None
    baseline_cert: Optional[CertificateInfo] = None

    def copy(self) -> "DomainState":
        return DomainState(
            status=self.status,
            ips=list(self.ips),
            serial=self.serial,
            last_ip_change=self.last_ip_change,
            last_cert_change=self.last_cert_change,
            baseline_cert=self.baseline_cert,
        )


# Change events. Every event carries the domain and the detection timestamp.


@dataclass(frozen=True)
class AuthorityLost:
    kind: ClassVar[EventKind] = EventKind.AUTHORITY_LOST
    severity: ClassVar[Severity] = Severity.WARNING

    domain: str
    timestamp: str
    dns_status: int
    previous_ips: tuple[str, ...] = ()
    previous_serial: Optional[str] = None


@dataclass(frozen=True)
class CertificateValidationError:
    kind: ClassVar[EventKind] = EventKind.CERTIFICATE_VALIDATION_ERROR
    severity: ClassVar[Severity] = Severity.CRITICAL

    domain: str
    timestamp: str
    error: str
    target_ip: Optional[str] = None


@dataclass(frozen=True)
class CertificateChanged:
    kind: ClassVar[EventKind] = EventKind.CERTIFICATE_CHANGED
    severity: ClassVar[Severity] = Severity.CRITICAL

    domain: str
    timestamp: str
    current: CertificateInfo
    previous: Optional[CertificateInfo] = None


@dataclass(frozen=True)
class IpChanged:
    kind: ClassVar[EventKind] = EventKind.IP_CHANGED
    severity: ClassVar[Severity] = Severity.WARNING

    domain: str
    timestamp: str
    previous_ips: tuple[str, ...]
    new_ips: tuple[str, ...]
    serial: Optional[str] = None
    dns_status: int = 0

    @property
    def record_count(self) -> int:
        return len(self.new_ips)


@dataclass(frozen=True)
class SoaUpdated:
    kind: ClassVar[EventKind] = EventKind.SOA_UPDATED
    severity: ClassVar[Severity] = Severity.INFO

    domain: str
    timestamp: str
    previous_serial: Optional[str]
    new_serial: Optional[str]
    soa: SOARecord = field(default_factory=SOARecord)
    dns_status: int = 0


@dataclass(frozen=True)
class CriticalConcurrentChange:
    kind: ClassVar[EventKind] = EventKind.CRITICAL_CONCURRENT_CHANGE
    severity: ClassVar[Severity] = Severity.CRITICAL

    domain: str
    timestamp: str
    window_minutes: float
    previous_ips: tuple[str, ...]
    new_ips: tuple[str, ...]
    current_cert: Optional[CertificateInfo]
    previous_cert: Optional[CertificateInfo]
    last_ip_change: Optional[str]
    last_cert_change: Optional[str]


ChangeEvent = Union[
    AuthorityLost,
    CertificateValidationError,
    CertificateChanged,
    IpChanged,
    SoaUpdated,
    CriticalConcurrentChange,
]


@dataclass
class DetectionResult:
    """Output of one change-detector run."""

    events: list[ChangeEvent]
    next_state: DomainState
    persist: bool
    aborted: bool = False

    @property
    def kinds(self) -> list[EventKind]:
        return [event.kind for event in self.events]


@dataclass
class DomainCheckResult:
    """Result of one orchestrated check of a domain."""

    domain: str
    timestamp: str
    events: list[ChangeEvent] = field(default_factory=list)
    persisted: bool = False
    alerts_sent: int = 0
    skipped: bool = False
    initialized: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors
