"""
Change Detector for DNS and TLS posture.

This module implements the pure decision logic that compares a domain's
previously persisted state with a fresh DNS snapshot and certificate probe
outcome. It decides what changed, classifies the change into typed events,
and computes the next state to persist. It performs no I/O.

Decision order (later steps read the outputs of earlier ones):
1. Authority check: unreachable authority short-circuits the tick
2. IP comparison: set semantics against the stored IPs
3. Certificate validation against the baseline (first sorted IP only)
4. IP change event
5. SOA-only change, evaluated only when the IPs did not change
6. Critical correlation of IP and certificate changes within a window
7. Persistence decision: only when the state actually changed
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from dns_monitor.config import DomainConfig
from dns_monitor.enums import DomainStatus
from dns_monitor.models import (
    AuthorityLost,
    CertificateChanged,
    CertificateInfo,
    CertificateValidationError,
    CertProbeResult,
    ChangeEvent,
    CriticalConcurrentChange,
    DetectionResult,
    DNSSnapshot,
    DomainState,
    IpChanged,
    SOARecord,
    SoaUpdated,
    normalize_ips,
    parse_timestamp,
    utc_isoformat,
)


class ChangeDetector:
    """
    Classifies DNS/TLS observations into change events.

    The detector is stateless; everything it needs is passed to ``detect``,
    which makes every decision reproducible from its inputs.
    """

    @staticmethod
    def initial_state() -> DomainState:
        """State recorded the first time a domain is seen."""
        return DomainState(status=DomainStatus.UNINITIALIZED)

    @staticmethod
    def probe_target(snapshot: DNSSnapshot) -> Optional[str]:
        """
        IP whose certificate should be probed, or None when there is nothing to probe.

        Only the first current IP is sampled.
        """
        if snapshot.no_authority:
            return None
        ips = normalize_ips(snapshot.ips)
        return ips[0] if ips else None

    def detect(
        self,
        previous: Optional[DomainState],
        config: DomainConfig,
        snapshot: DNSSnapshot,
        probe: Optional[CertProbeResult] = None,
        now: Optional[datetime] = None,
    ) -> DetectionResult:
        """
        Compare the previous state with a new observation.

        Args:
            previous: Persisted state, or None if the domain was never seen
            config: Monitoring settings of the domain
            snapshot: Fresh DNS observation
            probe: Certificate probe of ``probe_target(snapshot)``; None if no probe ran
            now: Detection time (defaults to the current UTC time)

        Returns:
            DetectionResult with events, next state and persistence flag
        """
        now = now or datetime.now(timezone.utc)
        timestamp = utc_isoformat(now)
        domain = config.name

        if previous is None:
            return DetectionResult(
                events=[], next_state=self.initial_state(), persist=True
            )

        state = previous.copy()
        events: list[ChangeEvent] = []

        # Step 1: authority
        if snapshot.no_authority:
            if previous.status != DomainStatus.NO_AUTHORITY:
                events.append(
                    AuthorityLost(
                        domain=domain,
                        timestamp=timestamp,
                        dns_status=snapshot.status,
                        previous_ips=tuple(previous.ips),
                        previous_serial=previous.serial,
                    )
                )
                state.status = DomainStatus.NO_AUTHORITY
                state.ips = []
                state.serial = None
            return self._finish(previous, state, events)

        # Step 2: IPs, compared as sets
        current_ips = normalize_ips(snapshot.ips)
        previous_ips = normalize_ips(previous.ips)
        ip_changed = set(current_ips) != set(previous_ips)

        if previous.status == DomainStatus.UNINITIALIZED:
            return self._establish_baseline(previous, state, config, snapshot, probe, timestamp)

        state.status = DomainStatus.RESOLVED

        # Step 3: certificate
        cert_changed = False
        previous_cert = previous.baseline_cert
        current_cert: Optional[CertificateInfo] = None
        if current_ips:
            if probe is None or probe.failed:
                return self._abort(previous, config, probe, timestamp, current_ips[0])

            current_cert = probe.certificate
            if previous_cert is None:
                state.baseline_cert = current_cert
            elif not current_cert.same_as(previous_cert):
                cert_changed = True
                state.baseline_cert = current_cert
                state.last_cert_change = timestamp
                if not config.suppress_cert_alerts:
                    events.append(
                        CertificateChanged(
                            domain=domain,
                            timestamp=timestamp,
                            current=current_cert,
                            previous=previous_cert,
                        )
                    )

        # Step 4: IP change
        if ip_changed:
            state.ips = current_ips
            state.last_ip_change = timestamp
            if not config.suppress_ip_change_alerts:
                events.append(
                    IpChanged(
                        domain=domain,
                        timestamp=timestamp,
                        previous_ips=tuple(previous_ips),
                        new_ips=tuple(current_ips),
                        serial=snapshot.serial,
                        dns_status=snapshot.status,
                    )
                )

        # Step 5: SOA-only change
        if not ip_changed and snapshot.serial != previous.serial:
            state.serial = snapshot.serial
            if not config.soa_alerts_suppressed:
                events.append(
                    SoaUpdated(
                        domain=domain,
                        timestamp=timestamp,
                        previous_serial=previous.serial,
                        new_serial=snapshot.serial,
                        soa=snapshot.soa or SOARecord(),
                        dns_status=snapshot.status,
                    )
                )

        # Step 6: critical correlation on stored timestamps
        if (ip_changed or cert_changed) and config.critical_change_window_minutes:
            if self.within_window(state, now, config.critical_change_window_minutes):
                events.append(
                    CriticalConcurrentChange(
                        domain=domain,
                        timestamp=timestamp,
                        window_minutes=config.critical_change_window_minutes,
                        previous_ips=tuple(previous_ips),
                        new_ips=tuple(state.ips),
                        current_cert=state.baseline_cert,
                        previous_cert=previous_cert if cert_changed else None,
                        last_ip_change=state.last_ip_change,
                        last_cert_change=state.last_cert_change,
                    )
                )

        return self._finish(previous, state, events)

    @staticmethod
    def within_window(state: DomainState, now: datetime, window_minutes: float) -> bool:
        """True when both the last IP change and the last cert change fall within the window."""
        last_ip = parse_timestamp(state.last_ip_change)
        last_cert = parse_timestamp(state.last_cert_change)
        if last_ip is None or last_cert is None:
            return False
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        window = timedelta(minutes=window_minutes)
        return (now - last_ip) <= window and (now - last_cert) <= window

    def _establish_baseline(
        self,
        previous: DomainState,
        state: DomainState,
        config: DomainConfig,
        snapshot: DNSSnapshot,
        probe: Optional[CertProbeResult],
        timestamp: str,
    ) -> DetectionResult:
        """First real observation: adopt everything as baseline, alert on nothing."""
        current_ips = normalize_ips(snapshot.ips)
        if current_ips:
            if probe is None or probe.failed:
                return self._abort(previous, config, probe, timestamp, current_ips[0])
            state.baseline_cert = probe.certificate

        state.status = DomainStatus.RESOLVED
        state.ips = current_ips
        state.serial = snapshot.serial
        return self._finish(previous, state, [])

    @staticmethod
    def _abort(
        previous: DomainState,
        config: DomainConfig,
        probe: Optional[CertProbeResult],
        timestamp: str,
        target_ip: str,
    ) -> DetectionResult:
        """Certificate probe failure: report it and leave the state untouched."""
        error = probe.error if probe is not None and probe.error else "No certificate probe result"
        event = CertificateValidationError(
            domain=config.name,
            timestamp=timestamp,
            error=error,
            target_ip=probe.target_ip if probe is not None and probe.target_ip else target_ip,
        )
        return DetectionResult(
            events=[event], next_state=previous, persist=False, aborted=True
        )

    @staticmethod
    def _finish(
        previous: DomainState, state: DomainState, events: list[ChangeEvent]
    ) -> DetectionResult:
        return DetectionResult(events=events, next_state=state, persist=state != previous)
