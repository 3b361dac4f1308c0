"""MQTT transport layer wrapping paho-mqtt."""

from mqtt_subscriber.mqtt.events import (
    ConnAck,
    ErrorKind,
    Event,
    IncomingMessage,
    OutgoingDisconnect,
    TransportError,
)
from mqtt_subscriber.mqtt.transport import (
    InlineTransport,
    ThreadedTransport,
    Transport,
    TransportOperationError,
    create_transport,
)

__all__ = [
    "ConnAck",
    "ErrorKind",
    "Event",
    "IncomingMessage",
    "OutgoingDisconnect",
    "TransportError",
    "InlineTransport",
    "ThreadedTransport",
    "Transport",
    "TransportOperationError",
    "create_transport",
]
