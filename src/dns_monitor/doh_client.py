"""
DNS-over-HTTPS client producing DNS snapshots.

This module provides an async DoH client (JSON wire format) with TLS
enforcement. It normalizes A and SOA answers into a DNSSnapshot and surfaces
the "no reachable authority" condition separately from an empty answer.
"""

import time
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from dns_monitor.enums import DNSErrorCode, DNSRecordType
from dns_monitor.exceptions import MalformedUpstreamDataError, TransportError
from dns_monitor.models import DNSSnapshot, SOARecord, normalize_ips


# DoH response code reported when no authoritative server could be reached
NO_AUTHORITY_STATUS = 3

NOERROR_STATUS = 0

# Providers annotate unreachable authorities in Comment[] (extended DNS errors)
NO_AUTHORITY_HINTS = (
    "no reachable authority",
)


class DoHClient:
    """
    Async DNS-over-HTTPS client.

    Queries A and SOA records of a domain and returns a DNSSnapshot. Every
    request carries an explicit timeout; transport failures raise
    TransportError and never produce a partial snapshot.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the DoH client.

        Args:
            endpoint: DoH JSON endpoint URL (must be HTTPS)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self._endpoint = endpoint
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "DoHClient":
        """Async context manager entry."""
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,  # TLS certificate verification enforced
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def _validate_endpoint_url(self) -> None:
        """
        Validate that the endpoint uses HTTPS.

        Raises:
            TransportError: If the endpoint does not use HTTPS
        """
        parsed = urlparse(self._endpoint)
        if parsed.scheme.lower() != "https":
            raise TransportError(
                code=DNSErrorCode.TLS_ERROR.value,
                message=f"DoH endpoint must use HTTPS: {self._endpoint}",
                details={"endpoint": self._endpoint, "scheme": parsed.scheme},
            )

    async def query(self, domain: str, record_type: DNSRecordType) -> dict:
        """
        Run a single DoH query and return the decoded JSON document.

        Raises:
            TransportError: On timeout, connection failure or non-200 status
            MalformedUpstreamDataError: If the body is not a JSON object
        """
        self._validate_endpoint_url()
        client = self._ensure_client()
        start_time = time.perf_counter()
        params = {"name": domain, "type": record_type.name}

        try:
            response = await client.get(
                self._endpoint,
                params=params,
                headers={"Accept": "application/dns-json"},
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                code=DNSErrorCode.TIMEOUT.value,
                message=f"DoH query timed out after {self._timeout}s",
                details={"domain": domain, "type": record_type.name},
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                code=DNSErrorCode.NETWORK_ERROR.value,
                message=f"DoH connection error: {e}",
                details={"domain": domain, "type": record_type.name},
            ) from e

        if response.status_code != 200:
            raise TransportError(
                code=DNSErrorCode.HTTP_ERROR.value,
                message=f"DoH server returned HTTP {response.status_code}",
                details={
                    "domain": domain,
                    "type": record_type.name,
                    "http_status_code": response.status_code,
                    "response_time_ms": self._elapsed_ms(start_time),
                },
            )

        try:
            document = response.json()
        except ValueError as e:
            raise MalformedUpstreamDataError(
                code=DNSErrorCode.PARSE_ERROR.value,
                message=f"DoH response is not valid JSON: {e}",
                details={"domain": domain, "type": record_type.name},
            ) from e

        if not isinstance(document, dict) or not isinstance(document.get("Status"), int):
            raise MalformedUpstreamDataError(
                code=DNSErrorCode.PARSE_ERROR.value,
                message="DoH response has no integer Status field",
                details={"domain": domain, "type": record_type.name},
            )

        return document

    async def snapshot(self, domain: str) -> DNSSnapshot:
        """
        Observe the A and SOA records of a domain.

        The SOA query is skipped when the A query already reports that no
        authority is reachable.
        """
        a_document = await self.query(domain, DNSRecordType.A)
        status = a_document["Status"]
        comments = self._comments(a_document)

        if self.is_no_authority(a_document):
            return DNSSnapshot(
                status=status,
                ips=(),
                soa=None,
                no_authority=True,
                comments=comments,
            )

        self._ensure_answered(domain, DNSRecordType.A, a_document)
        ips = normalize_ips(
            answer["data"]
            for answer in self._answers(a_document, DNSRecordType.A)
        )

        soa = self.parse_soa(a_document)
        if soa is None:
            soa_document = await self.query(domain, DNSRecordType.SOA)
            self._ensure_answered(domain, DNSRecordType.SOA, soa_document)
            soa = self.parse_soa(soa_document)

        return DNSSnapshot(
            status=status,
            ips=tuple(ips),
            soa=soa,
            no_authority=False,
            comments=comments,
        )

    @staticmethod
    def is_no_authority(document: dict) -> bool:
        """Check whether a DoH document reports an unreachable authority."""
        if document.get("Status") == NO_AUTHORITY_STATUS:
            return True
        comments = " ".join(DoHClient._comments(document)).lower()
        return any(hint in comments for hint in NO_AUTHORITY_HINTS)

    @staticmethod
    def _ensure_answered(domain: str, record_type: DNSRecordType, document: dict) -> None:
        """
        Fail the lookup on any response code other than NOERROR.

        SERVFAIL, REFUSED and the like are never read as an empty answer.
        """
        status = document["Status"]
        if status != NOERROR_STATUS:
            raise TransportError(
                code=DNSErrorCode.RESPONSE_ERROR.value,
                message=f"DoH server answered with response code {status}",
                details={
                    "domain": domain,
                    "type": record_type.name,
                    "dns_status": status,
                    "comments": list(DoHClient._comments(document)),
                },
            )

    @staticmethod
    def parse_soa(document: dict) -> Optional[SOARecord]:
        """Return the first SOA answer of a document, or None."""
        for answer in DoHClient._answers(document, DNSRecordType.SOA):
            return SOARecord.from_rdata(answer["data"])
        return None

    @staticmethod
    def _answers(document: dict, record_type: DNSRecordType) -> list[dict[str, Any]]:
        """Answer records of a given type; malformed entries are ignored."""
        answers = document.get("Answer") or []
        if not isinstance(answers, list):
            return []
        return [
            answer
            for answer in answers
            if isinstance(answer, dict)
            and answer.get("type") == record_type.value
            and isinstance(answer.get("data"), str)
        ]

    @staticmethod
    def _comments(document: dict) -> tuple[str, ...]:
        comments = document.get("Comment") or []
        if isinstance(comments, str):
            comments = [comments]
        if not isinstance(comments, list):
            return ()
        return tuple(str(comment) for comment in comments)

    def _elapsed_ms(self, start_time: float) -> float:
        """Calculate elapsed time in milliseconds."""
        return (time.perf_counter() - start_time) * 1000

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
