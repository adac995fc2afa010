"""
Property-based tests for the Monitor Orchestrator.

The DoH service, the certificate prober and the alert channel are replaced
by in-memory fakes; state lives in a MemoryKeyValueStore so that every
write can be inspected.
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from dns_monitor.audit_logger import AuditLogger
from dns_monitor.config import (
    DomainConfig,
    PersistenceConfig,
    SystemConfig,
    TelegramConfig,
)
from dns_monitor.doh_client import DoHClient
from dns_monitor.enums import DomainStatus, EventKind
from dns_monitor.exceptions import ConfigurationError, NotificationError, TransportError
from dns_monitor.models import (
    CertificateInfo,
    CertProbeResult,
    DNSSnapshot,
    DomainState,
    SOARecord,
)
from dns_monitor.notifications import AlertDispatcher
from dns_monitor.orchestrator import DomainLockRegistry, MonitorOrchestrator
from dns_monitor.state_store import MemoryKeyValueStore, StateStore


NOW = datetime(2025, 12, 10, 5, 30, tzinfo=timezone.utc)
CERT_A = CertificateInfo("R3", "example.com", "2025-01-01T00:00:00+00:00", "2025-04-01T00:00:00+00:00", "AA:AA")
CERT_B = CertificateInfo("E1", "example.com", "2025-02-01T00:00:00+00:00", "2025-05-01T00:00:00+00:00", "BB:BB")


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.new_event_loop().run_until_complete(coro)


def resolved(*ips: str, serial: str = "100") -> DNSSnapshot:
    return DNSSnapshot(status=0, ips=tuple(sorted(ips)), soa=SOARecord(serial=serial))


class FakeDoH:
    """Answers snapshots from a table; exceptions in the table are raised."""

    def __init__(self, answers: Optional[dict] = None, delay: float = 0) -> None:
        self.answers = answers or {}
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def snapshot(self, domain: str) -> DNSSnapshot:
        self.calls.append(domain)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        answer = self.answers.get(domain, resolved("1.1.1.1"))
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeProber:
    def __init__(self, result: Optional[CertProbeResult] = None) -> None:
        self.result = result or CertProbeResult(certificate=CERT_A)
        self.calls: list[tuple[str, str]] = []

    async def probe(self, domain: str, ip: str) -> CertProbeResult:
        self.calls.append((domain, ip))
        return CertProbeResult(self.result.certificate, self.result.error, ip)


class MockChannel:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages: list[str] = []

    async def send(self, text: str) -> None:
        if self.fail:
            raise NotificationError(code="http_error", message="Telegram returned HTTP 500")
        self.messages.append(text)

    def get_name(self) -> str:
        return "mock"


class _NullStream:
    def write(self, text: str) -> int:
        return len(text)

    def flush(self) -> None:
        pass


def make_config(domains, simulation_mode: bool = False, telegram: bool = True, max_concurrency: int = 5):
    return SystemConfig(
        domains=[d if isinstance(d, DomainConfig) else DomainConfig(name=d) for d in domains],
        telegram=TelegramConfig(bot_token="123:ABC", chat_id="1") if telegram else None,
        persistence=PersistenceConfig(state_file_path=Path("unused.json"), hmac_secret="secret"),
        max_concurrency=max_concurrency,
        simulation_mode=simulation_mode,
    )


class Harness:
    """Wires an orchestrator around fakes."""

    def __init__(
        self,
        domains,
        doh: Optional[FakeDoH] = None,
        prober: Optional[FakeProber] = None,
        channel: Optional[MockChannel] = None,
        simulation_mode: bool = False,
        telegram: bool = True,
        max_concurrency: int = 5,
    ) -> None:
        self.config = make_config(domains, simulation_mode, telegram, max_concurrency)
        self.backend = MemoryKeyValueStore()
        self.store = StateStore(self.backend)
        self.doh = doh or FakeDoH()
        self.prober = prober or FakeProber()
        self.channel = channel if channel is not None else MockChannel()
        self.logger = AuditLogger(output_format="json", output_stream=_NullStream())
        self.orchestrator = MonitorOrchestrator(
            config=self.config,
            state_store=self.store,
            doh_client=self.doh,
            prober=self.prober,
            dispatcher=AlertDispatcher(self.channel, logger=self.logger, simulation_mode=simulation_mode),
            logger=self.logger,
            clock=lambda: NOW,
        )

    def seed(self, domain: str, state: DomainState) -> None:
        self.store.save(domain, state)

    def check(self, domain: str = "example.com"):
        return run_async(self.orchestrator.check_domain(self.config.get_domain(domain)))

    def tick(self):
        return run_async(self.orchestrator.run_tick())


BASELINE = DomainState(
    status=DomainStatus.RESOLVED, ips=["1.1.1.1"], serial="100", baseline_cert=CERT_A
)


class TestInitializationProperty:
    """A never-seen domain only records the UNINITIALIZED state."""

    @given(domain=st.sampled_from(["example.com", "example.org", "xn--mnchen-3ya.de"]))
    @settings(max_examples=10)
    def test_first_check_records_initial_state(self, domain: str) -> None:
        h = Harness([domain])

        result = h.check(domain)

        assert result.initialized is True
        assert result.persisted is True
        assert result.events == []
        assert h.store.load(domain).status == DomainStatus.UNINITIALIZED
        assert h.doh.calls == []
        assert h.channel.messages == []

    def test_second_check_adopts_baseline_silently(self) -> None:
        h = Harness(["example.com"])
        h.check()

        result = h.check()

        state = h.store.load("example.com")
        assert result.events == []
        assert state.status == DomainStatus.RESOLVED
        assert state.ips == ["1.1.1.1"]
        assert state.baseline_cert == CERT_A
        assert h.channel.messages == []


class TestChangeFlowProperty:
    """Detected changes are delivered and then persisted."""

    def test_ip_change_is_persisted_and_sent(self) -> None:
        h = Harness(["example.com"], doh=FakeDoH({"example.com": resolved("9.9.9.9")}))
        h.seed("example.com", BASELINE)

        result = h.check()

        assert [e.kind for e in result.events] == [EventKind.IP_CHANGED]
        assert result.persisted is True
        assert result.alerts_sent == 1
        assert h.store.load("example.com").ips == ["9.9.9.9"]
        assert h.prober.calls == [("example.com", "9.9.9.9")]
        assert "9.9.9.9" in h.channel.messages[0]

    def test_unchanged_observation_writes_nothing(self) -> None:
        h = Harness(["example.com"])
        h.seed("example.com", BASELINE)
        before = h.store.load_raw("example.com")

        result = h.check()

        assert result.events == []
        assert result.persisted is False
        assert h.store.load_raw("example.com") == before
        assert any(e.message == "No state change" for e in h.logger.entries)

    def test_probe_failure_leaves_record_byte_identical(self) -> None:
        """*For any* failed probe, the stored record is untouched and the error is alerted."""
        h = Harness(
            ["example.com"],
            doh=FakeDoH({"example.com": resolved("9.9.9.9")}),
            prober=FakeProber(CertProbeResult(error="TLS handshake failed")),
        )
        h.seed("example.com", BASELINE)
        before = h.store.load_raw("example.com")

        result = h.check()

        assert [e.kind for e in result.events] == [EventKind.CERTIFICATE_VALIDATION_ERROR]
        assert result.persisted is False
        assert result.alerts_sent == 1
        assert h.store.load_raw("example.com") == before

    def test_authority_lost_skips_probe(self) -> None:
        h = Harness(["example.com"], doh=FakeDoH({"example.com": DNSSnapshot(status=3, no_authority=True)}))
        h.seed("example.com", BASELINE)

        result = h.check()

        assert [e.kind for e in result.events] == [EventKind.AUTHORITY_LOST]
        assert h.prober.calls == []
        assert h.store.load("example.com").status == DomainStatus.NO_AUTHORITY


class TestFailureIsolationProperty:
    """Failures are recorded per domain and never partially applied."""

    def test_dns_error_records_failure_without_write(self) -> None:
        error = TransportError(code="timeout", message="DoH request timed out")
        h = Harness(["example.com"], doh=FakeDoH({"example.com": error}))
        h.seed("example.com", BASELINE)
        before = h.store.load_raw("example.com")

        result = h.check()

        assert result.success is False
        assert "DoH request timed out" in result.errors[0]
        assert h.store.load_raw("example.com") == before
        assert h.prober.calls == []
        assert h.channel.messages == []

    def test_servfail_answer_keeps_stored_ips(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"Status": 2, "Comment": ["upstream timeout"]})

        doh = DoHClient("https://dns.example/dns-query", transport=httpx.MockTransport(handler))
        h = Harness(["example.com"], doh=doh)
        h.seed("example.com", BASELINE)
        before = h.store.load_raw("example.com")

        async def check_and_close():
            try:
                return await h.orchestrator.check_domain(h.config.get_domain("example.com"))
            finally:
                await doh.close()

        result = run_async(check_and_close())

        assert result.success is False
        assert result.events == []
        assert "response code 2" in result.errors[0]
        assert h.store.load_raw("example.com") == before
        assert h.prober.calls == []
        assert h.channel.messages == []

    def test_dispatch_failure_leaves_state_for_next_tick(self) -> None:
        """*For any* failed delivery, nothing is written and the alert is sent on the next tick."""
        channel = MockChannel(fail=True)
        h = Harness(["example.com"], doh=FakeDoH({"example.com": resolved("9.9.9.9")}), channel=channel)
        h.seed("example.com", BASELINE)
        before = h.store.load_raw("example.com")

        result = h.check()

        assert result.success is False
        assert result.persisted is False
        assert result.alerts_sent == 0
        assert h.store.load_raw("example.com") == before

        channel.fail = False
        retry = h.check()

        assert [e.kind for e in retry.events] == [EventKind.IP_CHANGED]
        assert retry.alerts_sent == 1
        assert retry.persisted is True
        assert "9.9.9.9" in channel.messages[0]
        assert h.store.load("example.com").ips == ["9.9.9.9"]

    def test_one_failing_domain_does_not_abort_others(self) -> None:
        doh = FakeDoH({
            "bad.example": TransportError(code="network_error", message="connection refused"),
            "crash.example": RuntimeError("unexpected"),
            "good.example": resolved("9.9.9.9"),
        })
        h = Harness(["bad.example", "crash.example", "good.example"], doh=doh)
        for domain in ("bad.example", "crash.example", "good.example"):
            h.seed(domain, BASELINE)

        tick = h.tick()

        by_domain = {r.domain: r for r in tick.results}
        assert by_domain["good.example"].success is True
        assert by_domain["good.example"].alerts_sent == 1
        assert by_domain["bad.example"].success is False
        assert "RuntimeError" in by_domain["crash.example"].errors[0]
        assert len(tick.failed) == 2
        assert tick.success is False


class TestConcurrencyProperty:
    """In-flight checks are bounded and never overlap for one domain."""

    @given(
        count=st.integers(min_value=1, max_value=8),
        limit=st.integers(min_value=1, max_value=4),
    )
    @settings(max_examples=30, deadline=None)
    def test_in_flight_checks_bounded(self, count: int, limit: int) -> None:
        domains = [f"d{i}.example" for i in range(count)]
        h = Harness(domains, doh=FakeDoH(delay=0.001), max_concurrency=limit)
        for domain in domains:
            h.seed(domain, BASELINE)

        tick = h.tick()

        assert tick.checked == count
        assert h.doh.max_in_flight <= limit
        assert sorted(h.doh.calls) == sorted(domains)

    def test_locked_domain_is_skipped(self) -> None:
        h = Harness(["example.com"])
        h.seed("example.com", BASELINE)
        locks: DomainLockRegistry = h.orchestrator.locks

        async def scenario():
            assert await locks.try_acquire("example.com") is True
            try:
                return await h.orchestrator.check_domain(h.config.domains[0])
            finally:
                locks.release("example.com")

        result = run_async(scenario())

        assert result.skipped is True
        assert h.doh.calls == []
        assert locks.is_locked("example.com") is False


class TestTickConfigurationProperty:
    def test_no_domains_raises(self) -> None:
        h = Harness([])
        with pytest.raises(ConfigurationError) as exc_info:
            h.tick()
        assert exc_info.value.code == "no_domains"

    def test_missing_credentials_raise_outside_simulation(self) -> None:
        h = Harness(["example.com"], telegram=False)
        with pytest.raises(ConfigurationError) as exc_info:
            h.tick()
        assert exc_info.value.code == "missing_credentials"


class TestSimulationModeProperty:
    """Dry runs detect and log but neither write state nor send alerts."""

    def test_simulation_writes_and_sends_nothing(self) -> None:
        h = Harness(
            ["example.com"],
            doh=FakeDoH({"example.com": resolved("9.9.9.9")}),
            simulation_mode=True,
            telegram=False,
        )
        h.seed("example.com", BASELINE)
        before = h.store.load_raw("example.com")

        tick = h.tick()

        result = tick.results[0]
        assert [e.kind for e in result.events] == [EventKind.IP_CHANGED]
        assert result.persisted is False
        assert result.alerts_sent == 0
        assert h.store.load_raw("example.com") == before
        assert h.channel.messages == []

    def test_simulation_does_not_initialize_state(self) -> None:
        h = Harness(["example.com"], simulation_mode=True)

        result = h.check()

        assert result.initialized is True
        assert h.backend.keys() == []
