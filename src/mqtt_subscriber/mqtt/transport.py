"""paho-mqtt backed transports for the connection manager."""

import logging
import queue
import ssl
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Protocol

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion, MQTTErrorCode

from mqtt_subscriber.config import SubscriberConfig
from mqtt_subscriber.mqtt.events import (
    ConnAck,
    ErrorKind,
    Event,
    IncomingMessage,
    OutgoingDisconnect,
    TransportError,
)
from mqtt_subscriber.tls import build_tls_context, load_tls_material

logger = logging.getLogger(__name__)

_CONNECTION_LOST_CODES = frozenset({MQTTErrorCode.MQTT_ERR_NO_CONN, MQTTErrorCode.MQTT_ERR_CONN_LOST})


class TransportOperationError(Exception):
    """Raised when a transport operation fails."""

    pass


class Transport(Protocol):
    """Capability interface the connection manager drives."""

    def connect(self) -> None: ...

    def reconnect(self) -> None: ...

    def subscribe(self, topic: str, qos: int) -> None: ...

    def unsubscribe(self, topics: Sequence[str]) -> None: ...

    def publish(self, topic: str, payload: bytes | str, qos: int = 0, retain: bool = False) -> None: ...

    def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    def poll_next_event(self, timeout: float) -> Event | None: ...


class PahoTransport(ABC):
    """Shared paho-mqtt plumbing: options, callbacks and the event queue.

    Callbacks translate paho notifications into events on a queue. Subclasses
    decide who runs paho's network loop.
    """

    def __init__(self, config: SubscriberConfig, tls_context: ssl.SSLContext | None = None):
        """Initialize the transport.

        Args:
            config: Subscriber configuration.
            tls_context: TLS context to use; required when the scheme is encrypted.
        """
        self.config = config

        # MQTT v3.1.1: clean_session is not a v5 concept. The manager owns
        # reconnection, so paho must not retry on its own.
        self._client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            clean_session=config.clean_session,
            protocol=mqtt.MQTTv311,
            reconnect_on_failure=False,
        )

        self._events: queue.Queue[Event] = queue.Queue()
        self._connected = threading.Event()
        self._connack = threading.Event()
        self._connect_failure: str | None = None
        self._disconnect_requested = False
        # Set by an accepted CONNACK; only such a session can be "lost"
        self._session_established = False

        self._client.on_connect = self._handle_connect
        self._client.on_disconnect = self._handle_disconnect
        self._client.on_message = self._handle_message
        self._client.on_subscribe = self._handle_subscribe

        if config.username:
            password = config.password.get_secret_value() if config.password else ""
            self._client.username_pw_set(config.username, password)

        if config.will is not None:
            self._client.will_set(
                config.will.topic, config.will.payload, config.will.qos, config.will.retain
            )
            logger.debug("Set LWT on topic %s", config.will.topic)

        if tls_context is not None:
            self._client.tls_set_context(tls_context)

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: mqtt.ConnectFlags,
        reason_code: Any,
        properties: Any | None,
    ) -> None:
        if reason_code.is_failure:
            logger.error("Connection refused by broker: %s", reason_code)
            self._connect_failure = str(reason_code)
        else:
            logger.info(
                "Connected to MQTT broker %s:%d", self.config.broker_address, self.config.broker_port
            )
            self._connect_failure = None
            self._session_established = True
            self._connected.set()
            self._events.put(ConnAck(session_present=bool(flags.session_present)))
        self._connack.set()

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: mqtt.DisconnectFlags,
        reason_code: Any,
        properties: Any | None,
    ) -> None:
        self._connected.clear()
        if self._disconnect_requested:
            logger.debug("Disconnect completed: %s", reason_code)
            return
        if not self._session_established:
            # A refused or aborted attempt; connect/reconnect reports it
            logger.debug("Connection attempt ended: %s", reason_code)
            if not self._connack.is_set():
                self._connect_failure = str(reason_code)
                self._connack.set()
            return
        self._session_established = False
        logger.warning("Disconnected from MQTT broker: %s", reason_code)
        self._events.put(TransportError(ErrorKind.DISCONNECTED, str(reason_code)))

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        message: mqtt.MQTTMessage,
    ) -> None:
        self._events.put(
            IncomingMessage(
                topic=message.topic,
                payload=message.payload,
                qos=message.qos,
                retain=bool(message.retain),
            )
        )

    def _handle_subscribe(
        self,
        client: mqtt.Client,
        userdata: Any,
        mid: int,
        reason_code_list: list[Any],
        properties: Any | None,
    ) -> None:
        for reason_code in reason_code_list:
            if reason_code.is_failure:
                logger.error("Broker rejected subscription (mid=%d): %s", mid, reason_code)

    @abstractmethod
    def _start_network(self) -> None:
        """Begin servicing the socket."""

    @abstractmethod
    def _stop_network(self) -> None:
        """Stop servicing the socket."""

    def _wait_for_connack(self, timeout: float) -> bool:
        return self._connack.wait(timeout)

    def _await_session(self) -> None:
        if not self._wait_for_connack(self.config.connect_timeout):
            raise TransportOperationError(
                f"Connection timeout after {self.config.connect_timeout}s to "
                f"{self.config.broker_address}:{self.config.broker_port}"
            )
        if self._connect_failure is not None:
            raise TransportOperationError(f"Connection refused: {self._connect_failure}")

    def connect(self) -> None:
        """Connect to the broker and wait for CONNACK.

        Raises:
            TransportOperationError: If the broker is unreachable, refuses the
                connection, or does not answer within ``connect_timeout``.
        """
        self._disconnect_requested = False
        self._connack.clear()
        self._session_established = False
        self._connect_failure = None
        try:
            self._client.connect(
                self.config.broker_address,
                self.config.broker_port,
                keepalive=self.config.keepalive,
            )
        except Exception as e:
            raise TransportOperationError(f"Connection failed: {e}") from e

        self._start_network()
        self._await_session()

    def reconnect(self) -> None:
        """Re-establish a lost connection using the configured endpoint.

        Raises:
            TransportOperationError: If the attempt fails.
        """
        self._stop_network()
        self._disconnect_requested = False
        self._connack.clear()
        self._session_established = False
        self._connect_failure = None
        try:
            self._client.reconnect()
        except Exception as e:
            raise TransportOperationError(f"Reconnect failed: {e}") from e

        self._start_network()
        self._await_session()

    def subscribe(self, topic: str, qos: int) -> None:
        """Subscribe to one topic filter.

        Raises:
            TransportOperationError: If the SUBSCRIBE could not be sent.
        """
        result, _mid = self._client.subscribe(topic, qos=int(qos))
        if result != MQTTErrorCode.MQTT_ERR_SUCCESS:
            raise TransportOperationError(
                f"Subscribe failed for {topic}: {mqtt.error_string(result)}"
            )

    def unsubscribe(self, topics: Sequence[str]) -> None:
        """Unsubscribe from topic filters.

        Raises:
            TransportOperationError: If the UNSUBSCRIBE could not be sent.
        """
        if not topics:
            return
        result, _mid = self._client.unsubscribe(list(topics))
        if result != MQTTErrorCode.MQTT_ERR_SUCCESS:
            raise TransportOperationError(f"Unsubscribe failed: {mqtt.error_string(result)}")

    def publish(
        self,
        topic: str,
        payload: bytes | str,
        qos: int = 0,
        retain: bool = False,
    ) -> None:
        """Publish a message to a topic.

        Raises:
            TransportOperationError: If not connected or publish fails.
        """
        if not self.is_connected():
            raise TransportOperationError("Not connected to broker")

        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        result = self._client.publish(topic, payload, qos=qos, retain=retain)
        if result.rc != MQTTErrorCode.MQTT_ERR_SUCCESS:
            raise TransportOperationError(f"Publish failed: {mqtt.error_string(result.rc)}")

        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    def disconnect(self) -> None:
        """Send DISCONNECT and stop the network loop.

        Raises:
            TransportOperationError: If the DISCONNECT could not be sent.
        """
        self._disconnect_requested = True
        result = self._client.disconnect()
        self._stop_network()
        self._connected.clear()
        if result != MQTTErrorCode.MQTT_ERR_SUCCESS:
            raise TransportOperationError(f"Disconnect failed: {mqtt.error_string(result)}")
        self._events.put(OutgoingDisconnect())
        logger.info("Disconnected from MQTT broker")

    def is_connected(self) -> bool:
        """Check if the client is currently connected."""
        return self._connected.is_set()

    def _next_queued(self) -> Event | None:
        try:
            return self._events.get_nowait()
        except queue.Empty:
            return None

    @abstractmethod
    def poll_next_event(self, timeout: float) -> Event | None:
        """Wait up to ``timeout`` seconds for the next event."""


class ThreadedTransport(PahoTransport):
    """paho's background network thread feeds the event queue."""

    def _start_network(self) -> None:
        self._client.loop_start()

    def _stop_network(self) -> None:
        # Also reaps a network thread that already exited after a connection loss
        self._client.loop_stop()

    def poll_next_event(self, timeout: float) -> Event | None:
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None


class InlineTransport(PahoTransport):
    """The caller's thread drives paho's network loop while polling."""

    def _start_network(self) -> None:
        pass

    def _stop_network(self) -> None:
        pass

    def _wait_for_connack(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while not self._connack.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            rc = self._client.loop(timeout=min(remaining, 0.1))
            if rc in _CONNECTION_LOST_CODES and not self._connack.is_set():
                self._connect_failure = mqtt.error_string(rc)
                return True
        return True

    def poll_next_event(self, timeout: float) -> Event | None:
        event = self._next_queued()
        if event is not None:
            return event

        rc = self._client.loop(timeout=timeout)
        if rc in _CONNECTION_LOST_CODES:
            # on_disconnect has usually queued the loss already
            event = self._next_queued()
            if event is None and not self._disconnect_requested:
                self._session_established = False
                event = TransportError(ErrorKind.DISCONNECTED, mqtt.error_string(rc))
            return event
        if rc != MQTTErrorCode.MQTT_ERR_SUCCESS:
            self._events.put(TransportError(ErrorKind.OTHER, mqtt.error_string(rc)))
        return self._next_queued()


def create_transport(config: SubscriberConfig) -> PahoTransport:
    """Build the transport selected by the configuration.

    TLS material is loaded and validated here, before any network I/O.

    Raises:
        CertificateError: If TLS material is unreadable or malformed.
    """
    tls_context = None
    if config.use_tls:
        tls_context = build_tls_context(load_tls_material(config))

    if config.transport == "inline":
        return InlineTransport(config, tls_context)
    return ThreadedTransport(config, tls_context)
