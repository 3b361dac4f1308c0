"""Shared pytest fixtures for MQTT subscriber tests."""

import datetime
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from mqtt_subscriber.config import SubscriberConfig
from mqtt_subscriber.mqtt.events import ErrorKind, Event, OutgoingDisconnect, TransportError
from mqtt_subscriber.mqtt.transport import TransportOperationError


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers.

    Note: Markers are also defined in pyproject.toml [tool.pytest.ini_options].
    This function ensures they're registered even when running pytest directly.
    """
    config.addinivalue_line("markers", "chaos: chaos engineering tests for failure resilience")
    config.addinivalue_line("markers", "security: security and input validation tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        if "/chaos/" in str(item.fspath):
            item.add_marker(pytest.mark.chaos)

        if "/security/" in str(item.fspath):
            item.add_marker(pytest.mark.security)


class FakeTransport:
    """In-memory transport driven by a scripted event sequence.

    When the script runs out, an ``OutgoingDisconnect`` ends the event loop.
    A scripted ``TransportError(DISCONNECTED)`` drops the fake connection.
    """

    def __init__(self, events: Sequence[Event] = ()):
        self.events: deque[Event] = deque(events)
        self.connected = False
        self.calls: list[Any] = []
        self.connect_error: Exception | None = None
        self.reconnect_results: deque[Exception | None] = deque()
        self.on_reconnect: Callable[[], None] | None = None
        self.failing_topics: set[str] = set()
        self.unsubscribe_error: Exception | None = None

    def connect(self) -> None:
        self.calls.append("connect")
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def reconnect(self) -> None:
        self.calls.append("reconnect")
        if self.on_reconnect is not None:
            self.on_reconnect()
        result = (
            self.reconnect_results.popleft()
            if self.reconnect_results
            else TransportOperationError("broker unreachable")
        )
        if result is not None:
            raise result
        self.connected = True

    def subscribe(self, topic: str, qos: int) -> None:
        self.calls.append(("subscribe", topic, int(qos)))
        if topic in self.failing_topics:
            raise TransportOperationError(f"subscribe refused for {topic}")

    def unsubscribe(self, topics: Sequence[str]) -> None:
        self.calls.append(("unsubscribe", tuple(topics)))
        if self.unsubscribe_error is not None:
            raise self.unsubscribe_error

    def publish(self, topic: str, payload: bytes | str, qos: int = 0, retain: bool = False) -> None:
        self.calls.append(("publish", topic, payload, qos, retain))

    def disconnect(self) -> None:
        self.calls.append("disconnect")
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    def poll_next_event(self, timeout: float) -> Event | None:
        self.calls.append("poll")
        if not self.events:
            return OutgoingDisconnect()
        event = self.events.popleft()
        if isinstance(event, TransportError) and event.kind is ErrorKind.DISCONNECTED:
            self.connected = False
        return event

    @property
    def subscribe_calls(self) -> list[tuple[str, int]]:
        return [(c[1], c[2]) for c in self.calls if isinstance(c, tuple) and c[0] == "subscribe"]


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Create an empty scripted transport."""
    return FakeTransport()


@pytest.fixture
def make_config() -> Callable[..., SubscriberConfig]:
    """Factory for configs with fast timings suitable for tests."""

    def factory(**overrides: Any) -> SubscriberConfig:
        values: dict[str, Any] = {
            "broker_address": "test-broker.local",
            "broker_port": 1883,
            "client_id": "test-client",
            "topics": ["t/1", "t/2", "t/3"],
            "qos": [1, 0, 2],
            "reconnect_interval": 0,
            "poll_error_delay": 0,
            "poll_timeout": 0.01,
            "connect_timeout": 0.2,
        }
        values.update(overrides)
        return SubscriberConfig(**values)

    return factory


@dataclass(frozen=True)
class Pki:
    """Throwaway certificate authority plus one client identity, as PEM."""

    ca_pem: bytes
    client_cert_pem: bytes
    client_key_pem: bytes
    other_key_pem: bytes
    client_key_traditional_pem: bytes

    @property
    def combined_pem(self) -> bytes:
        return self.client_cert_pem + self.client_key_pem


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _pkcs8(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def pki() -> Pki:
    """Generate a CA and a CA-signed client certificate in memory."""
    now = datetime.datetime.now(datetime.timezone.utc)

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("Test CA"))
        .issuer_name(_name("Test CA"))
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(ca_key, hashes.SHA256())
    )

    client_key = ec.generate_private_key(ec.SECP256R1())
    client_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("test-client"))
        .issuer_name(ca_cert.subject)
        .public_key(client_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(ca_key, hashes.SHA256())
    )

    other_key = ec.generate_private_key(ec.SECP256R1())

    return Pki(
        ca_pem=ca_cert.public_bytes(serialization.Encoding.PEM),
        client_cert_pem=client_cert.public_bytes(serialization.Encoding.PEM),
        client_key_pem=_pkcs8(client_key),
        other_key_pem=_pkcs8(other_key),
        client_key_traditional_pem=client_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ),
    )
