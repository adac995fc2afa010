"""
TLS certificate prober.

Performs a TLS handshake against a specific IP address with SNI set to the
monitored domain, and normalizes the peer certificate into CertificateInfo.
Timeouts, handshake failures and missing certificates are all reported as
probe failures.
"""

import asyncio
import hashlib
import ssl
from datetime import datetime, timezone
from typing import Optional

from dns_monitor.enums import ProbeErrorCode
from dns_monitor.exceptions import CertificateProbeError
from dns_monitor.models import CertificateInfo, CertProbeResult


def _name_field(name: tuple, preferred: tuple[str, ...] = ("commonName", "organizationName")) -> str:
    """Pick the CN (or O) out of an ssl-module distinguished name."""
    attributes: dict[str, str] = {}
    for rdn in name or ():
        for key, value in rdn:
            attributes.setdefault(key, value)
    for key in preferred:
        if attributes.get(key):
            return attributes[key]
    return "Unknown"


def _cert_time(value: Optional[str]) -> str:
    """Convert an ssl-module certificate time ('Jun  1 12:00:00 2025 GMT') to ISO-8601."""
    if not value:
        return "unknown"
    try:
        seconds = ssl.cert_time_to_seconds(value)
    except ValueError:
        return value
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()


def format_fingerprint(der_bytes: bytes) -> str:
    """SHA-256 fingerprint in the familiar AA:BB:... notation."""
    digest = hashlib.sha256(der_bytes).hexdigest().upper()
    return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))


def certificate_from_peer(cert: dict, der_bytes: bytes) -> CertificateInfo:
    """Build CertificateInfo from getpeercert() output and the DER encoding."""
    return CertificateInfo(
        issuer=_name_field(cert.get("issuer", ())),
        subject=_name_field(cert.get("subject", ())),
        valid_from=_cert_time(cert.get("notBefore")),
        valid_to=_cert_time(cert.get("notAfter")),
        fingerprint=format_fingerprint(der_bytes),
    )


class CertificateProber:
    """
    Async TLS certificate prober.

    The handshake verifies the chain and the host name against the domain,
    so an untrusted or mismatching certificate is a probe failure.
    """

    def __init__(
        self,
        port: int = 443,
        timeout: float = 5.0,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        """
        Initialize the prober.

        Args:
            port: TLS port to connect to
            timeout: Bound on connect plus handshake, in seconds
            ssl_context: Optional SSL context (defaults to a verifying context)
        """
        self._port = port
        self._timeout = timeout
        self._ssl_context = ssl_context or ssl.create_default_context()

    async def fetch(self, domain: str, ip: str) -> CertificateInfo:
        """
        Fetch the peer certificate presented by ``ip`` for ``domain``.

        Raises:
            CertificateProbeError: On timeout, TLS or connection failure, or
                when no certificate was presented
        """
        details = {"domain": domain, "ip": ip, "port": self._port}
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    host=ip,
                    port=self._port,
                    ssl=self._ssl_context,
                    server_hostname=domain,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise CertificateProbeError(
                code=ProbeErrorCode.TIMEOUT.value,
                message="TLS connection timed out",
                details=details,
            ) from e
        except ssl.SSLError as e:
            raise CertificateProbeError(
                code=ProbeErrorCode.TLS_ERROR.value,
                message=f"TLS handshake failed: {e}",
                details=details,
            ) from e
        except OSError as e:
            raise CertificateProbeError(
                code=ProbeErrorCode.CONNECTION_ERROR.value,
                message=f"Connection error: {e}",
                details=details,
            ) from e

        try:
            ssl_object = writer.get_extra_info("ssl_object")
            cert = ssl_object.getpeercert() if ssl_object else None
            der_bytes = ssl_object.getpeercert(binary_form=True) if ssl_object else None
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError):
                pass

        if not cert or not der_bytes or not cert.get("subject"):
            raise CertificateProbeError(
                code=ProbeErrorCode.NO_CERTIFICATE.value,
                message="No certificate or subject found",
                details=details,
            )

        return certificate_from_peer(cert, der_bytes)

    async def probe(self, domain: str, ip: str) -> CertProbeResult:
        """Probe a certificate, folding every failure into the result."""
        try:
            certificate = await self.fetch(domain, ip)
        except CertificateProbeError as e:
            return CertProbeResult(certificate=None, error=e.message, target_ip=ip)
        return CertProbeResult(certificate=certificate, error=None, target_ip=ip)
