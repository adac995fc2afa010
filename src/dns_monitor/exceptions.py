"""
Exception classes for the DNS monitor.

All exceptions inherit from DNSMonitorError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class DNSMonitorError(Exception):
    """Base exception for all DNS monitor errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DNSMonitorError):
    """Raised when a configured domain name is not valid."""

    pass


class TransportError(DNSMonitorError):
    """Raised when a DNS query or an alert POST fails (retried next tick)."""

    pass


class NotificationError(TransportError):
    """Raised when alert delivery fails (non-2xx or transport error)."""

    pass


class MalformedUpstreamDataError(DNSMonitorError):
    """Raised when the DNS-over-HTTPS service returns an unexpected shape."""

    pass


class CertificateProbeError(DNSMonitorError):
    """Raised when the TLS certificate of a domain cannot be obtained."""

    pass


class ConfigurationError(DNSMonitorError):
    """Raised when credentials or the domain list are missing or invalid."""

    pass


class PersistenceError(DNSMonitorError):
    """Raised when persistence operations fail (file I/O, HMAC validation)."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation fails, indicating data tampering."""

    pass
