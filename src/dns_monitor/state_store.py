"""
State Store module for persisted per-domain state.

This module provides the key-value storage contract (get/put of one
serialized record per key), an in-memory implementation, an HMAC-protected
JSON file implementation, and the StateStore adapter that maps DomainState
records to keys of the form "dns:<domain>".
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .enums import DomainStatus
from .exceptions import PersistenceError, TamperingError
from .models import CertificateInfo, DomainState, normalize_ips


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal durable key-value contract."""

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        ...

    def put(self, key: str, value: str) -> None:
        """Store a value under a key."""
        ...


class MemoryKeyValueStore:
    """Process-local key-value store (tests and dry runs)."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self.put_count = 0

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value
        self.put_count += 1

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileKeyValueStore:
    """
    Key-value store backed by a single JSON file with HMAC protection.

    The whole file is rewritten on every put; the HMAC covers the sorted
    serialization of all entries, so any out-of-band edit is detected on load.
    """

    VERSION = 1

    def __init__(self, file_path: Path, hmac_secret: str) -> None:
        """
        Initialize the file store.

        Args:
            file_path: Path to the state file (JSON format)
            hmac_secret: Secret key for HMAC computation
        """
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8")
        self._entries: Optional[dict[str, str]] = None
        self._last_updated = ""

    @property
    def file_path(self) -> Path:
        """Get the state file path."""
        return self._file_path

    def load(self) -> dict[str, str]:
        """
        Load entries from file and validate HMAC.

        Returns:
            Mapping of key to serialized value (empty if the file does not exist)

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If file cannot be read or parsed
        """
        if not self._file_path.exists():
            self._entries = {}
            return dict(self._entries)

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse state file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read state file: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(raw_data, dict):
            raise PersistenceError(
                code="parse_error",
                message="State file does not contain a JSON object",
                details={"file_path": str(self._file_path)},
            )

        stored_hmac = raw_data.get("hmac", "")
        data_for_hmac = {
            "version": raw_data.get("version"),
            "entries": raw_data.get("entries", {}),
            "last_updated": raw_data.get("last_updated"),
        }
        computed_hmac = self.compute_hmac(data_for_hmac)

        if not self.validate_hmac(stored_hmac, computed_hmac):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - data may have been tampered with",
                details={
                    "file_path": str(self._file_path),
                    "expected_hmac": computed_hmac,
                    "stored_hmac": stored_hmac,
                },
            )

        self._entries = {str(k): str(v) for k, v in raw_data.get("entries", {}).items()}
        self._last_updated = raw_data.get("last_updated", "")
        return dict(self._entries)

    def get(self, key: str) -> Optional[str]:
        if self._entries is None:
            self.load()
        return self._entries.get(key)

    def put(self, key: str, value: str) -> None:
        if self._entries is None:
            self.load()
        self._entries[key] = value
        self._save()

    def keys(self) -> list[str]:
        if self._entries is None:
            self.load()
        return sorted(self._entries)

    def _save(self) -> None:
        """
        Write all entries with a fresh HMAC.

        Raises:
            PersistenceError: If file cannot be written
        """
        now = datetime.now(timezone.utc).isoformat()
        data_for_hmac = {
            "version": self.VERSION,
            "entries": self._entries,
            "last_updated": now,
        }
        output_data = dict(data_for_hmac, hmac=self.compute_hmac(data_for_hmac))

        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._file_path.with_suffix(self._file_path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(output_data, f, indent=2, sort_keys=True)
            tmp_path.replace(self._file_path)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write state file: {e}",
                details={"file_path": str(self._file_path)},
            )
        self._last_updated = now

    def compute_hmac(self, data: dict) -> str:
        """Compute HMAC-SHA256 over the sorted serialization of ``data``."""
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def validate_hmac(self, stored_hmac: str, computed_hmac: str) -> bool:
        """Validate HMAC using constant-time comparison."""
        return hmac.compare_digest(stored_hmac, computed_hmac)


def serialize_state(state: DomainState) -> str:
    """Serialize a DomainState deterministically (sorted keys, compact)."""
    cert = state.baseline_cert
    data = {
        "status": state.status.value,
        "ips": normalize_ips(state.ips),
        "serial": state.serial,
        "last_ip_change": state.last_ip_change,
        "last_cert_change": state.last_cert_change,
        "baseline_cert": None if cert is None else {
            "issuer": cert.issuer,
            "subject": cert.subject,
            "valid_from": cert.valid_from,
            "valid_to": cert.valid_to,
            "fingerprint": cert.fingerprint,
        },
    }
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def deserialize_state(value: str) -> DomainState:
    """
    Rebuild a DomainState from its serialized form.

    Raises:
        PersistenceError: If the value is not a valid state record
    """
    try:
        data = json.loads(value)
        cert_data = data.get("baseline_cert")
        return DomainState(
            status=DomainStatus(data.get("status", DomainStatus.UNINITIALIZED.value)),
            ips=normalize_ips(data.get("ips") or []),
            serial=data.get("serial"),
            last_ip_change=data.get("last_ip_change"),
            last_cert_change=data.get("last_cert_change"),
            baseline_cert=None if not cert_data else CertificateInfo(
                issuer=cert_data["issuer"],
                subject=cert_data["subject"],
                valid_from=cert_data["valid_from"],
                valid_to=cert_data["valid_to"],
                fingerprint=cert_data["fingerprint"],
            ),
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise PersistenceError(
            code="parse_error",
            message=f"Invalid domain state record: {e}",
            details={"value": value[:200] if isinstance(value, str) else repr(value)},
        )


class StateStore:
    """
    Adapter between DomainState records and a key-value store.

    One record per domain under the key ``<prefix><domain>``.
    """

    def __init__(self, backend: KeyValueStore, key_prefix: str = "dns:") -> None:
        self._backend = backend
        self._key_prefix = key_prefix

    @property
    def backend(self) -> KeyValueStore:
        return self._backend

    def key_for(self, domain: str) -> str:
        return f"{self._key_prefix}{domain}"

    def load(self, domain: str) -> Optional[DomainState]:
        """Return the stored state of a domain, or None if it was never seen."""
        value = self._backend.get(self.key_for(domain))
        if value is None:
            return None
        return deserialize_state(value)

    def load_raw(self, domain: str) -> Optional[str]:
        """Return the stored serialized record unchanged."""
        return self._backend.get(self.key_for(domain))

    def save(self, domain: str, state: DomainState) -> None:
        """Persist the state of a domain."""
        self._backend.put(self.key_for(domain), serialize_state(state))
