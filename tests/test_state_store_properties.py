"""
Property-based tests for the State Store module.

Covers deterministic serialization, the "dns:" key layout, HMAC protection
of the file-backed store and tamper detection.
"""

import json
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from dns_monitor.enums import DomainStatus
from dns_monitor.exceptions import PersistenceError, TamperingError
from dns_monitor.models import CertificateInfo, DomainState
from dns_monitor.state_store import (
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    StateStore,
    deserialize_state,
    serialize_state,
)


# Strategies for generating valid test data

@st.composite
def timestamp_strategy(draw) -> str:
    """Generate valid ISO format timestamps."""
    year = draw(st.integers(min_value=2020, max_value=2030))
    month = draw(st.integers(min_value=1, max_value=12))
    day = draw(st.integers(min_value=1, max_value=28))
    hour = draw(st.integers(min_value=0, max_value=23))
    minute = draw(st.integers(min_value=0, max_value=59))
    return f"{year:04d}-{month:02d}-{day:02d}T{hour:02d}:{minute:02d}:00+00:00"


@st.composite
def certificate_strategy(draw) -> CertificateInfo:
    digest = draw(st.binary(min_size=32, max_size=32)).hex().upper()
    return CertificateInfo(
        issuer=draw(st.text(min_size=1, max_size=30)),
        subject=draw(st.text(min_size=1, max_size=30)),
        valid_from=draw(timestamp_strategy()),
        valid_to=draw(timestamp_strategy()),
        fingerprint=":".join(digest[i:i + 2] for i in range(0, len(digest), 2)),
    )


@st.composite
def domain_state_strategy(draw) -> DomainState:
    ips = draw(st.lists(
        st.tuples(*[st.integers(min_value=0, max_value=255)] * 4).map(
            lambda o: ".".join(str(x) for x in o)
        ),
        max_size=5,
        unique=True,
    ))
    return DomainState(
        status=draw(st.sampled_from(list(DomainStatus))),
        ips=sorted(ips),
        serial=draw(st.one_of(st.none(), st.integers(min_value=1, max_value=2**32 - 1).map(str))),
        last_ip_change=draw(st.one_of(st.none(), timestamp_strategy())),
        last_cert_change=draw(st.one_of(st.none(), timestamp_strategy())),
        baseline_cert=draw(st.one_of(st.none(), certificate_strategy())),
    )


@st.composite
def domain_strategy(draw) -> str:
    sld = draw(st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-", min_size=1, max_size=20))
    return f"{sld}.{draw(st.sampled_from(['com', 'net', 'org', 'de']))}"


class TestSerializationProperty:
    """DomainState serialization is deterministic and lossless."""

    @given(state=domain_state_strategy())
    @settings(max_examples=100)
    def test_serialize_deserialize_preserves_state(self, state: DomainState) -> None:
        assert deserialize_state(serialize_state(state)) == state

    @given(state=domain_state_strategy())
    @settings(max_examples=100)
    def test_equal_states_serialize_identically(self, state: DomainState) -> None:
        """*For any* state, an equal copy produces byte-identical output."""
        assert serialize_state(state) == serialize_state(state.copy())

    @given(state=domain_state_strategy())
    @settings(max_examples=100)
    def test_serialized_keys_are_sorted(self, state: DomainState) -> None:
        data = json.loads(serialize_state(state))
        assert list(data.keys()) == sorted(data.keys())
        assert data["status"] == state.status.value

    @pytest.mark.parametrize("value", ["not json", "[]", '{"status": "bogus"}', '{"baseline_cert": {"issuer": "x"}}'])
    def test_invalid_records_raise_persistence_error(self, value: str) -> None:
        with pytest.raises(PersistenceError):
            deserialize_state(value)


class TestStateStoreKeysProperty:
    """One record per domain under the prefixed key."""

    @given(domain=domain_strategy(), state=domain_state_strategy())
    @settings(max_examples=100)
    def test_save_uses_prefixed_key(self, domain: str, state: DomainState) -> None:
        backend = MemoryKeyValueStore()
        store = StateStore(backend)

        store.save(domain, state)

        assert backend.keys() == [f"dns:{domain}"]
        assert store.load(domain) == state
        assert store.load_raw(domain) == serialize_state(state)

    def test_unknown_domain_loads_none(self) -> None:
        store = StateStore(MemoryKeyValueStore())
        assert store.load("example.com") is None
        assert store.load_raw("example.com") is None

    def test_backends_satisfy_protocol(self) -> None:
        assert isinstance(MemoryKeyValueStore(), KeyValueStore)
        with tempfile.TemporaryDirectory() as tmpdir:
            assert isinstance(FileKeyValueStore(Path(tmpdir) / "s.json", "k"), KeyValueStore)


class TestFileStoreHmacProperty:
    """The file-backed store detects out-of-band modification."""

    @given(
        states=st.dictionaries(domain_strategy(), domain_state_strategy(), min_size=1, max_size=4),
        secret=st.text(min_size=8, max_size=32),
    )
    @settings(max_examples=50)
    def test_saved_states_reload_with_same_secret(self, states, secret: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            writer = StateStore(FileKeyValueStore(path, secret))
            for domain, state in states.items():
                writer.save(domain, state)

            reader = StateStore(FileKeyValueStore(path, secret))
            for domain, state in states.items():
                assert reader.load(domain) == state

    @given(state=domain_state_strategy())
    @settings(max_examples=50)
    def test_modified_entry_raises_tampering_error(self, state: DomainState) -> None:
        """*For any* saved state, editing the stored record invalidates the HMAC."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            StateStore(FileKeyValueStore(path, "secret-key")).save("example.com", state)

            raw = json.loads(path.read_text(encoding="utf-8"))
            raw["entries"]["dns:example.com"] = raw["entries"]["dns:example.com"] + " "
            path.write_text(json.dumps(raw), encoding="utf-8")

            with pytest.raises(TamperingError):
                FileKeyValueStore(path, "secret-key").load()

    def test_wrong_secret_raises_tampering_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            FileKeyValueStore(path, "secret-one").put("dns:example.com", "{}")

            with pytest.raises(TamperingError):
                FileKeyValueStore(path, "secret-two").get("dns:example.com")

    def test_corrupt_file_raises_persistence_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            path.write_text("{not json", encoding="utf-8")

            with pytest.raises(PersistenceError):
                FileKeyValueStore(path, "secret").load()

    def test_missing_file_is_empty_store(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = FileKeyValueStore(Path(tmpdir) / "nested" / "state.json", "secret")
            assert store.load() == {}
            assert store.get("dns:example.com") is None
            store.put("dns:example.com", "value")
            assert (Path(tmpdir) / "nested" / "state.json").exists()
