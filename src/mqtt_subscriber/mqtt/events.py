"""Events surfaced by a transport to the connection manager."""

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Classification of transport errors."""

    DISCONNECTED = "disconnected"
    OTHER = "other"


@dataclass(frozen=True)
class IncomingMessage:
    """Application message received on a subscribed topic."""

    topic: str
    payload: bytes
    qos: int
    retain: bool = False


@dataclass(frozen=True)
class ConnAck:
    """Broker accepted a connection."""

    session_present: bool = False


@dataclass(frozen=True)
class OutgoingDisconnect:
    """A DISCONNECT was sent by this client."""


@dataclass(frozen=True)
class TransportError:
    """Transport-level failure observed while polling."""

    kind: ErrorKind
    detail: str = ""


Event = IncomingMessage | ConnAck | OutgoingDisconnect | TransportError
