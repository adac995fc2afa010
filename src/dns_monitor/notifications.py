"""
Alert formatting and delivery for the DNS monitor.

Provides the AlertFormatter, which renders each change event kind into one
HTML message template, the Telegram bot channel, and the AlertDispatcher
that renders and sends the events of a tick.

Delivery failures are never swallowed: a non-2xx response or a transport
error raises NotificationError for the domain being processed.
"""

from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import TYPE_CHECKING, Iterable, Optional, Protocol, Sequence, runtime_checkable

import httpx

from .config import TelegramConfig
from .enums import LogLevel
from .exceptions import NotificationError
from .i18n import get_message
from .models import (
    UNKNOWN,
    AuthorityLost,
    CertificateChanged,
    CertificateInfo,
    CertificateValidationError,
    ChangeEvent,
    CriticalConcurrentChange,
    IpChanged,
    SoaUpdated,
)

if TYPE_CHECKING:
    from .audit_logger import AuditLogger


def format_timestamp(iso_timestamp: Optional[str], language: str = "en") -> str:
    """
    Format an ISO timestamp to a human-readable format.

    Args:
        iso_timestamp: ISO 8601 timestamp string
        language: 'de' for German, 'en' for English

    Returns:
        Formatted timestamp string ('unknown' for a missing value)
    """
    if not iso_timestamp:
        return get_message("label.unknown", language)
    try:
        dt = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return iso_timestamp

    if language == "de":
        # 10.12.2025, 05:29:03 UTC
        return dt.strftime("%d.%m.%Y, %H:%M:%S %Z").strip()
    # Dec 10, 2025, 05:29:03 UTC
    return dt.strftime("%b %d, %Y, %H:%M:%S %Z").strip()


class AlertFormatter:
    """Renders change events into Telegram HTML messages."""

    def __init__(self, language: str = "en") -> None:
        self._language = language

    @property
    def language(self) -> str:
        return self._language

    def render(self, event: ChangeEvent) -> str:
        """Render one event; every event kind has exactly one template."""
        if isinstance(event, AuthorityLost):
            return self._render_authority_lost(event)
        if isinstance(event, CertificateValidationError):
            return self._render_cert_error(event)
        if isinstance(event, CertificateChanged):
            return self._render_cert_changed(event)
        if isinstance(event, IpChanged):
            return self._render_ip_changed(event)
        if isinstance(event, SoaUpdated):
            return self._render_soa_updated(event)
        if isinstance(event, CriticalConcurrentChange):
            return self._render_critical(event)
        raise TypeError(f"Unsupported event type: {type(event).__name__}")

    # Helpers

    def _t(self, key: str, **kwargs) -> str:
        return get_message(key, self._language, **kwargs)

    def _line(self, label_key: str, value: object) -> str:
        return f"- {self._t(label_key)}: <code>{escape(str(value))}</code>"

    def _field(self, label_key: str, value: object) -> str:
        return f"{self._t(label_key)}: <code>{escape(str(value))}</code>"

    def _or_unknown(self, value: Optional[str]) -> str:
        if value is None or value == "" or value == UNKNOWN:
            return self._t("label.unknown")
        return value

    def _ips(self, ips: Sequence[str]) -> str:
        return ", ".join(ips) or self._t("label.none")

    def _header(self, title_key: str, domain: str, timestamp: str) -> list[str]:
        return [
            self._t(title_key),
            "",
            self._field("label.domain", domain),
            self._field("label.time", format_timestamp(timestamp, self._language)),
        ]

    def _certificate_block(
        self, label_key: str, cert: Optional[CertificateInfo], full: bool = True
    ) -> list[str]:
        if cert is None:
            return [f"<b>{self._t(label_key)}:</b> {self._t('label.none_recorded')}"]
        lines = [
            f"<b>{self._t(label_key)}:</b>",
            self._line("label.issuer", cert.issuer),
            self._line("label.subject", cert.subject),
        ]
        if full:
            lines.append(self._line("label.valid_from", cert.valid_from))
            lines.append(self._line("label.valid_to", cert.valid_to))
        lines.append(self._line("label.fingerprint", cert.fingerprint))
        return lines

    # Templates

    def _render_authority_lost(self, event: AuthorityLost) -> str:
        lines = self._header("alert.authority_lost.title", event.domain, event.timestamp)
        lines += [
            "",
            f"<b>{self._t('label.technical_details')}:</b>",
            self._line("label.dns_status", event.dns_status),
            self._line("label.previous_ips", self._ips(event.previous_ips)),
            self._line("label.soa_serial", self._or_unknown(event.previous_serial)),
        ]
        return "\n".join(lines)

    def _render_cert_error(self, event: CertificateValidationError) -> str:
        lines = self._header("alert.cert_error.title", event.domain, event.timestamp)
        if event.target_ip:
            lines.append(self._field("label.target_ip", event.target_ip))
        lines.append(self._field("label.error", event.error))
        return "\n".join(lines)

    def _render_cert_changed(self, event: CertificateChanged) -> str:
        lines = self._header("alert.cert_changed.title", event.domain, event.timestamp)
        lines.append("")
        lines += self._certificate_block("label.current_certificate", event.current)
        lines.append("")
        lines += self._certificate_block(
            "label.previous_certificate", event.previous, full=False
        )
        return "\n".join(lines)

    def _render_ip_changed(self, event: IpChanged) -> str:
        lines = [
            self._t("alert.ip_changed.title"),
            "",
            self._field("label.domain", event.domain),
            self._field("label.previous_ips", self._ips(event.previous_ips)),
            self._field("label.new_ips", self._ips(event.new_ips)),
            self._field("label.time", format_timestamp(event.timestamp, self._language)),
            "",
            f"<b>{self._t('label.technical_details')}:</b>",
            self._line("label.dns_status", event.dns_status),
            self._line("label.record_type", "A"),
            self._line("label.record_count", event.record_count),
            self._line("label.soa_serial", self._or_unknown(event.serial)),
        ]
        return "\n".join(lines)

    def _render_soa_updated(self, event: SoaUpdated) -> str:
        soa = event.soa
        lines = [
            self._t("alert.soa_updated.title"),
            "",
            self._field("label.domain", event.domain),
            self._field("label.previous_serial", self._or_unknown(event.previous_serial)),
            self._field("label.new_serial", self._or_unknown(event.new_serial)),
            self._field("label.time", format_timestamp(event.timestamp, self._language)),
            "",
            f"<b>{self._t('label.technical_details')}:</b>",
            self._line("label.dns_status", event.dns_status),
            self._line("label.record_type", "SOA"),
            self._line("label.primary_ns", self._or_unknown(soa.primary_ns)),
            self._line("label.admin_email", self._or_unknown(soa.admin_email)),
            self._line("label.refresh", self._or_unknown(soa.refresh)),
            self._line("label.retry", self._or_unknown(soa.retry)),
            self._line("label.expire", self._or_unknown(soa.expire)),
            self._line("label.min_ttl", self._or_unknown(soa.minimum_ttl)),
        ]
        return "\n".join(lines)

    def _render_critical(self, event: CriticalConcurrentChange) -> str:
        current = event.current_cert
        unknown = self._t("label.unknown")
        lines = self._header("alert.critical.title", event.domain, event.timestamp)
        lines += [
            "",
            f"<b>{self._t('label.ip_change')}:</b>",
            self._line("label.previous_ips", self._ips(event.previous_ips)),
            self._line("label.new_ips", self._ips(event.new_ips)),
            "",
            f"<b>{self._t('label.cert_change')}:</b>",
            self._line("label.issuer", current.issuer if current else unknown),
            self._line("label.subject", current.subject if current else unknown),
            self._line("label.fingerprint", current.fingerprint if current else unknown),
            "",
        ]
        lines += self._certificate_block(
            "label.previous_certificate", event.previous_cert, full=False
        )
        lines += [
            "",
            f"<b>{self._t('label.technical_details')}:</b>",
            self._line("label.time_window", self._t("label.minutes", minutes=f"{event.window_minutes:g}")),
            self._line("label.last_ip_change", self._or_unknown(event.last_ip_change)),
            self._line("label.last_cert_change", self._or_unknown(event.last_cert_change)),
        ]
        return "\n".join(lines)


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol defining the interface for alert channels."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """
        Deliver a rendered message.

        Raises:
            NotificationError: If delivery fails
        """
        ...

    @abstractmethod
    def get_name(self) -> str:
        """Return the name of this channel."""
        ...


class TelegramChannel:
    """Telegram notification channel using the Bot API."""

    def __init__(
        self,
        config: TelegramConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize Telegram channel.

        Args:
            config: Telegram configuration with bot_token, chat_id and optional topic_id
            transport: Optional httpx transport (used by tests)
        """
        self._chat_id = config.chat_id
        self._topic_id = config.topic_id
        self._timeout = config.timeout_seconds
        self._base_url = f"{config.api_base_url.rstrip('/')}/bot{config.bot_token}"
        self._transport = transport

    def build_payload(self, text: str) -> dict:
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if self._topic_id:
            payload["message_thread_id"] = int(self._topic_id) if str(self._topic_id).isdigit() else self._topic_id
        return payload

    async def send(self, text: str) -> None:
        """Send a message via the Telegram Bot API."""
        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.post(
                    f"{self._base_url}/sendMessage",
                    json=self.build_payload(text),
                    timeout=self._timeout,
                )
            except httpx.HTTPError as e:
                # The URL embeds the bot token, keep it out of the error
                raise NotificationError(
                    code="transport_error",
                    message=f"Telegram request failed: {type(e).__name__}",
                    details={"channel": self.get_name()},
                ) from e

        if not 200 <= response.status_code < 300:
            raise NotificationError(
                code="http_error",
                message=f"Telegram returned HTTP {response.status_code}",
                details={
                    "channel": self.get_name(),
                    "http_status_code": response.status_code,
                    "response": response.text[:200],
                },
            )

    def get_name(self) -> str:
        """Return channel name."""
        return "telegram"


@dataclass
class DispatchResult:
    """Outcome of dispatching the events of one domain check."""

    sent: int
    rendered: list[str]


class AlertDispatcher:
    """
    Renders events and sends them, in order, through one channel.

    There is no retry within a tick; the first delivery failure propagates
    to the caller. In simulation mode messages are logged instead of sent.
    """

    def __init__(
        self,
        channel: Optional[NotificationChannel],
        formatter: Optional[AlertFormatter] = None,
        logger: Optional["AuditLogger"] = None,
        simulation_mode: bool = False,
    ) -> None:
        self._channel = channel
        self._formatter = formatter or AlertFormatter()
        self._logger = logger
        self._simulation_mode = simulation_mode

    @property
    def formatter(self) -> AlertFormatter:
        return self._formatter

    @property
    def channel(self) -> Optional[NotificationChannel]:
        return self._channel

    async def dispatch(self, events: Iterable[ChangeEvent]) -> DispatchResult:
        """
        Render and deliver events.

        Raises:
            NotificationError: On the first failed delivery
        """
        sent = 0
        rendered: list[str] = []
        for event in events:
            text = self._formatter.render(event)
            rendered.append(text)

            if self._simulation_mode or self._channel is None:
                self._log(
                    LogLevel.INFO,
                    f"Alert not sent (dry run): {event.kind.value}",
                    {"domain": event.domain, "event": event.kind.value, "text": text},
                )
                continue

            try:
                await self._channel.send(text)
            except NotificationError as e:
                self._log(
                    LogLevel.ERROR,
                    f"Alert delivery failed on channel '{self._channel.get_name()}'",
                    {"domain": event.domain, "event": event.kind.value, "error": e.to_dict()},
                )
                raise
            sent += 1
            self._log(
                LogLevel.INFO,
                f"Alert sent: {event.kind.value}",
                {"domain": event.domain, "event": event.kind.value, "severity": event.severity.value},
            )

        return DispatchResult(sent=sent, rendered=rendered)

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "AlertDispatcher", message, data)
