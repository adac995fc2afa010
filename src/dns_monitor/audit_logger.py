"""
Structured logger for the DNS monitor.

Writes one line per entry as JSON, human-readable text, or both. Entries
below the configured level are dropped. Audit mode signs every entry with
HMAC-SHA256, and values under sensitive keys (bot tokens, HMAC secrets)
are masked before anything is written.
"""

import hmac
import hashlib
import json
import sys
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, TextIO

from dns_monitor.enums import LogLevel
from dns_monitor.models import ChangeEvent


LEVEL_ORDER = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}


@dataclass
class LogEntry:
    """Represents a single log entry with all metadata."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)
    signature: Optional[str] = None


def _jsonable(value: Any) -> Any:
    """Convert dataclasses and enums into plain JSON values."""
    if is_dataclass(value) and not isinstance(value, type):
        return _jsonable(asdict(value))
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


class AuditLogger:
    """
    Structured logger with dual-format output and optional signing.

    Entries are kept in memory as well, so callers and tests can inspect
    what a tick logged.
    """

    # Keys whose values never reach the output
    SENSITIVE_KEYS = frozenset({
        'token', 'secret', 'password', 'api_key', 'hmac_secret',
        'bot_token', 'auth', 'authorization', 'signing_key',
        'credential', 'credentials', 'private_key', 'access_token',
    })

    MASK_VALUE = "***MASKED***"

    def __init__(
        self,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
        min_level: LogLevel = LogLevel.INFO,
    ):
        """
        Initialize the logger.

        Args:
            output_format: Output format - 'json', 'text', or 'both'
            output_stream: Output stream for log entries (defaults to sys.stderr)
            min_level: Entries below this level are dropped
        """
        if output_format not in ("json", "text", "both"):
            raise ValueError(f"Invalid output_format: {output_format}")

        self._output_format = output_format
        self._output_stream = output_stream or sys.stderr
        self._min_level = min_level
        self._audit_mode = False
        self._signing_key: Optional[bytes] = None
        self._entries: list[LogEntry] = []

    @classmethod
    def from_config(cls, config, output_stream: Optional[TextIO] = None) -> "AuditLogger":
        """Build a logger from a LoggingConfig."""
        logger = cls(
            output_format=config.output_format,
            output_stream=output_stream,
            min_level=parse_level(config.level),
        )
        if config.audit_mode and config.audit_signing_key:
            logger.enable_audit_mode(config.audit_signing_key)
        return logger

    @property
    def output_format(self) -> str:
        return self._output_format

    @property
    def min_level(self) -> LogLevel:
        return self._min_level

    @property
    def audit_mode(self) -> bool:
        return self._audit_mode

    @property
    def entries(self) -> list[LogEntry]:
        """Get all logged entries."""
        return self._entries.copy()

    def enable_audit_mode(self, signing_key: str) -> None:
        """
        Enable audit mode with HMAC signing of log entries.

        Args:
            signing_key: Secret key for HMAC-SHA256 signing
        """
        if not signing_key:
            raise ValueError("Signing key cannot be empty")

        self._audit_mode = True
        self._signing_key = signing_key.encode('utf-8')

    def disable_audit_mode(self) -> None:
        self._audit_mode = False
        self._signing_key = None

    def is_enabled_for(self, level: LogLevel) -> bool:
        return LEVEL_ORDER[level] >= LEVEL_ORDER[self._min_level]

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an entry in the configured format(s).

        Returns:
            The created LogEntry, or None when the level is filtered out
        """
        if not self.is_enabled_for(level):
            return None

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=self.mask_sensitive_data(_jsonable(data or {})),
        )

        if self._audit_mode and self._signing_key:
            entry.signature = self._sign_entry(entry)

        self._entries.append(entry)
        self._output_entry(entry)
        return entry

    def debug(self, component: str, message: str, data: Optional[dict] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.DEBUG, component, message, data)

    def info(self, component: str, message: str, data: Optional[dict] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.INFO, component, message, data)

    def warn(self, component: str, message: str, data: Optional[dict] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.WARN, component, message, data)

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[Exception] = None,
        additional_data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an error with its context.

        Monitor exceptions contribute their code and details; any other
        exception contributes its type and message.
        """
        data = additional_data.copy() if additional_data else {}

        if error is not None:
            data["error_message"] = str(getattr(error, "message", error))
            data["error_type"] = type(error).__name__
            code = getattr(error, "code", None)
            if code:
                data["error_code"] = code
            details = getattr(error, "details", None)
            if details:
                data["error_details"] = details

        return self.log(LogLevel.ERROR, component, message, data)

    def log_event(self, event: ChangeEvent, component: str = "ChangeDetector") -> Optional[LogEntry]:
        """Log a change event at a level matching its severity."""
        level = {
            "info": LogLevel.INFO,
            "warning": LogLevel.WARN,
            "critical": LogLevel.ERROR,
        }.get(event.severity.value, LogLevel.INFO)
        data = {"event": event.kind.value, "severity": event.severity.value}
        data.update(_jsonable(event))
        return self.log(level, component, f"{event.kind.value} detected for {event.domain}", data)

    def mask_sensitive_data(self, data: dict) -> dict:
        """Recursively mask sensitive values in a dictionary."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            key_lower = key.lower()
            if any(sensitive_key in key_lower for sensitive_key in self.SENSITIVE_KEYS):
                masked[key] = self.MASK_VALUE
            elif isinstance(value, dict):
                masked[key] = self.mask_sensitive_data(value)
            elif isinstance(value, list):
                masked[key] = [
                    self.mask_sensitive_data(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                masked[key] = value

        return masked

    def _sign_entry(self, entry: LogEntry) -> str:
        """Sign a log entry with HMAC-SHA256 (hex)."""
        if not self._signing_key:
            raise RuntimeError("Signing key not set")

        signable = {
            "timestamp": entry.timestamp,
            "level": entry.level.value,
            "component": entry.component,
            "message": entry.message,
            "data": entry.data,
        }
        content = json.dumps(signable, sort_keys=True, ensure_ascii=False)

        return hmac.new(
            self._signing_key,
            content.encode('utf-8'),
            hashlib.sha256
        ).hexdigest()

    def verify_signature(self, entry: LogEntry) -> bool:
        """Verify the signature of a log entry."""
        if not entry.signature or not self._signing_key:
            return False
        expected = self._sign_entry(entry)
        return hmac.compare_digest(entry.signature, expected)

    def _output_entry(self, entry: LogEntry) -> None:
        if self._output_format in ("json", "both"):
            self._output_stream.write(self.format_json(entry) + "\n")
        if self._output_format in ("text", "both"):
            self._output_stream.write(self.format_text(entry) + "\n")
        self._output_stream.flush()

    def format_json(self, entry: LogEntry) -> str:
        obj = {
            "timestamp": entry.timestamp,
            "level": entry.level.value,
            "component": entry.component,
            "message": entry.message,
            "data": entry.data,
        }
        if entry.signature:
            obj["signature"] = entry.signature
        return json.dumps(obj, ensure_ascii=False)

    def format_text(self, entry: LogEntry) -> str:
        # [TIMESTAMP] LEVEL [COMPONENT] MESSAGE {data}
        parts = [
            f"[{entry.timestamp}]",
            entry.level.value.upper(),
            f"[{entry.component}]",
            entry.message,
        ]
        if entry.data:
            parts.append(json.dumps(entry.data, ensure_ascii=False))

        text = " ".join(parts)
        if entry.signature:
            text += f" [sig:{entry.signature[:16]}...]"
        return text

    def clear_entries(self) -> None:
        self._entries.clear()


def parse_level(value: str) -> LogLevel:
    """Parse a level name ('debug', 'info', 'warn'/'warning', 'error')."""
    normalized = (value or "").strip().lower()
    if normalized == "warning":
        normalized = "warn"
    try:
        return LogLevel(normalized)
    except ValueError:
        raise ValueError(f"Invalid log level: {value}") from None
