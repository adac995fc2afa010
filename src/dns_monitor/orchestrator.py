"""
Monitor Orchestrator for the DNS monitor.

This module coordinates one monitoring tick: for every configured domain it
loads the stored state, takes a DNS snapshot, probes the certificate of the
first resolved IP, runs the change detector, dispatches the resulting alerts and
then persists the next state.

Domains are independent: they are checked concurrently under a bounded
semaphore, and a failure of one domain never aborts the others.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from .audit_logger import AuditLogger
from .change_detector import ChangeDetector
from .config import DomainConfig, SystemConfig
from .enums import LogLevel
from .exceptions import (
    ConfigurationError,
    DNSMonitorError,
    MalformedUpstreamDataError,
    NotificationError,
    PersistenceError,
    TransportError,
)
from .models import CertProbeResult, DNSSnapshot, DomainCheckResult, utc_isoformat
from .notifications import AlertDispatcher
from .state_store import StateStore


class SnapshotSource(Protocol):
    async def snapshot(self, domain: str) -> DNSSnapshot: ...


class CertificateSource(Protocol):
    async def probe(self, domain: str, ip: str) -> CertProbeResult: ...


class DomainLockRegistry:
    """
    At most one in-flight check per domain.

    Acquisition never waits: a domain that is already being checked is
    reported as busy and the caller skips it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, domain: str) -> asyncio.Lock:
        lock = self._locks.get(domain)
        if lock is None:
            lock = self._locks[domain] = asyncio.Lock()
        return lock

    def is_locked(self, domain: str) -> bool:
        return self._lock_for(domain).locked()

    async def try_acquire(self, domain: str) -> bool:
        lock = self._lock_for(domain)
        if lock.locked():
            return False
        # An unlocked asyncio.Lock is acquired without suspending
        await lock.acquire()
        return True

    def release(self, domain: str) -> None:
        self._lock_for(domain).release()


@dataclass
class TickResult:
    """Results of one tick over all domains."""

    timestamp: str
    results: list[DomainCheckResult] = field(default_factory=list)

    @property
    def checked(self) -> int:
        return sum(1 for r in self.results if not r.skipped)

    @property
    def event_count(self) -> int:
        return sum(len(r.events) for r in self.results)

    @property
    def failed(self) -> list[DomainCheckResult]:
        return [r for r in self.results if not r.success]

    @property
    def success(self) -> bool:
        return not self.failed


class MonitorOrchestrator:
    """
    Main orchestrator for DNS and TLS posture checks.

    Collaborators are injected so that tests can replace the network-facing
    parts (DoH lookups, certificate probes, alert delivery) with fakes.
    """

    def __init__(
        self,
        config: SystemConfig,
        state_store: StateStore,
        doh_client: SnapshotSource,
        prober: CertificateSource,
        dispatcher: AlertDispatcher,
        logger: Optional[AuditLogger] = None,
        detector: Optional[ChangeDetector] = None,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[DomainLockRegistry] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: System configuration
            state_store: Persisted per-domain state
            doh_client: Source of DNS snapshots
            prober: Source of certificate probe results
            dispatcher: Renders and delivers alerts
            logger: Optional audit logger
            detector: Change detector (a fresh one by default)
            clock: Returns the current UTC time
            locks: Per-domain lock registry (shared between ticks)
        """
        self._config = config
        self._state_store = state_store
        self._doh_client = doh_client
        self._prober = prober
        self._dispatcher = dispatcher
        self._logger = logger
        self._detector = detector or ChangeDetector()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks = locks or DomainLockRegistry()

    @property
    def config(self) -> SystemConfig:
        return self._config

    @property
    def locks(self) -> DomainLockRegistry:
        return self._locks

    async def run_tick(self, domains: Optional[list[DomainConfig]] = None) -> TickResult:
        """
        Check all domains concurrently.

        Raises:
            ConfigurationError: If there is nothing to check or no alert
                channel is configured outside simulation mode
        """
        domains = self._config.domains if domains is None else domains
        if not domains:
            raise ConfigurationError(
                code="no_domains",
                message="No domains configured for monitoring",
            )
        if self._config.telegram is None and not self._config.simulation_mode:
            raise ConfigurationError(
                code="missing_credentials",
                message="Telegram credentials are required unless running in simulation mode",
            )

        tick = TickResult(timestamp=utc_isoformat(self._clock()))
        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrency))

        async def bounded(domain_config: DomainConfig) -> DomainCheckResult:
            async with semaphore:
                return await self.check_domain(domain_config)

        self._log_info("Orchestrator", "Tick started", {"domains": len(domains)})
        outcomes = await asyncio.gather(
            *(bounded(d) for d in domains), return_exceptions=True
        )

        for domain_config, outcome in zip(domains, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                self._log_error(
                    "Orchestrator", "Unexpected error during domain check",
                    outcome, {"domain": domain_config.name},
                )
                outcome = DomainCheckResult(
                    domain=domain_config.name,
                    timestamp=tick.timestamp,
                    errors=[f"{type(outcome).__name__}: {outcome}"],
                )
            tick.results.append(outcome)

        self._log_info(
            "Orchestrator",
            "Tick finished",
            {
                "checked": tick.checked,
                "events": tick.event_count,
                "failed": len(tick.failed),
            },
        )
        return tick

    async def check_domain(self, domain_config: DomainConfig) -> DomainCheckResult:
        """Run one full check of a single domain."""
        domain = domain_config.name
        now = self._clock()
        result = DomainCheckResult(domain=domain, timestamp=utc_isoformat(now))

        if not await self._locks.try_acquire(domain):
            self._log_info("Orchestrator", "Check already in progress, skipping", {"domain": domain})
            result.skipped = True
            return result

        try:
            await self._check_locked(domain_config, now, result)
        finally:
            self._locks.release(domain)
        return result

    async def _check_locked(
        self, domain_config: DomainConfig, now: datetime, result: DomainCheckResult
    ) -> None:
        domain = domain_config.name

        try:
            previous = self._state_store.load(domain)
        except PersistenceError as e:
            self._fail(result, "Failed to load state", e)
            return

        if previous is None:
            result.initialized = True
            self._persist(domain, self._detector.initial_state(), result)
            self._log_info("Orchestrator", "New domain, initial state recorded", {"domain": domain})
            return

        try:
            snapshot = await self._doh_client.snapshot(domain)
        except (TransportError, MalformedUpstreamDataError) as e:
            self._fail(result, "DNS lookup failed", e)
            return

        target = self._detector.probe_target(snapshot)
        probe = await self._prober.probe(domain, target) if target else None

        detection = self._detector.detect(previous, domain_config, snapshot, probe, now)
        result.events = list(detection.events)
        for event in detection.events:
            if self._logger:
                self._logger.log_event(event)

        if detection.aborted:
            self._log_info(
                "Orchestrator",
                "Certificate probe failed, state left unchanged",
                {"domain": domain, "target_ip": target},
            )
        elif not detection.persist:
            self._log_info("Orchestrator", "No state change", {"domain": domain})

        # Delivery precedes the write; a failed delivery leaves the state as it was.
        if detection.events:
            try:
                dispatch = await self._dispatcher.dispatch(detection.events)
            except NotificationError as e:
                self._fail(result, "Alert delivery failed, state left unchanged", e)
                return
            result.alerts_sent = dispatch.sent

        if detection.persist and not detection.aborted:
            self._persist(domain, detection.next_state, result)

    def _persist(self, domain: str, state, result: DomainCheckResult) -> None:
        if self._config.simulation_mode:
            self._log_info("StateStore", "Simulation mode, state not written", {"domain": domain})
            return
        try:
            self._state_store.save(domain, state)
        except PersistenceError as e:
            self._fail(result, "Failed to persist state", e)
            return
        result.persisted = True
        self._log_info(
            "StateStore",
            "State persisted",
            {"domain": domain, "status": state.status.value, "ips": state.ips},
        )

    def _fail(self, result: DomainCheckResult, message: str, error: DNSMonitorError) -> None:
        result.errors.append(f"{message}: {error.message}")
        self._log_error("Orchestrator", message, error, {"domain": result.domain})

    def _log_info(self, component: str, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, component, message, data)

    def _log_error(
        self, component: str, message: str, error: Exception, data: dict
    ) -> None:
        if self._logger:
            self._logger.log_error(component, message, error, data)
