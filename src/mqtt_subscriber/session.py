"""Connection lifecycle: connect, subscribe, consume, reconnect, shut down."""

import logging
import threading
import time
from enum import Enum
from typing import Any

from mqtt_subscriber.config import SubscriberConfig
from mqtt_subscriber.errors import (
    InitialConnectError,
    PollErrorLimitError,
    ReconnectExhaustedError,
    SubscribeError,
)
from mqtt_subscriber.mqtt.events import (
    ConnAck,
    ErrorKind,
    Event,
    IncomingMessage,
    OutgoingDisconnect,
    TransportError,
)
from mqtt_subscriber.mqtt.transport import Transport, TransportOperationError
from mqtt_subscriber.observability.metrics import METRICS
from mqtt_subscriber.output import MessageSink
from mqtt_subscriber.qos import QoS, normalize_qos

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle states of the connection manager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"


class ConnectionManager:
    """Owns one broker session for the lifetime of the process.

    The manager is driven from a single thread. ``stop()`` may be called from
    any thread (e.g. a signal handler); it is honoured at every wait: the
    event poll, the reconnect interval and the poll error backoff.
    """

    def __init__(
        self,
        config: SubscriberConfig,
        transport: Transport,
        sink: MessageSink,
        shutdown_event: threading.Event | None = None,
    ):
        """Initialize the manager.

        Args:
            config: Configuration snapshot; reused for every (re)subscription.
            transport: Transport to drive.
            sink: Receives every incoming message.
            shutdown_event: Optional externally owned cancellation event.
        """
        self.config = config
        self.transport = transport
        self._sink = sink
        self._shutdown = shutdown_event if shutdown_event is not None else threading.Event()

        self.state = ConnectionState.DISCONNECTED
        self.subscriptions: dict[str, QoS] = {}
        self.reconnect_attempts = 0
        self._consecutive_poll_errors = 0

    @property
    def shutdown_requested(self) -> bool:
        """Whether ``stop()`` has been called."""
        return self._shutdown.is_set()

    def normalized_qos(self) -> list[QoS]:
        """QoS level per configured topic, recomputed from the config snapshot."""
        return normalize_qos(self.config.topics, self.config.qos, self.config.qos_policy)

    def start(self) -> None:
        """Connect and subscribe to every configured topic.

        There is no retry here: only a connection that was once established
        is retried.

        Raises:
            InvalidQosError: If the configured QoS list is invalid.
            InitialConnectError: If the broker cannot be reached.
            SubscribeError: If any topic subscription fails.
        """
        qos_levels = self.normalized_qos()

        self.state = ConnectionState.CONNECTING
        logger.info("Connecting to %s as %s", self.config.broker_uri, self.config.client_id)
        try:
            self.transport.connect()
        except TransportOperationError as e:
            self.state = ConnectionState.DISCONNECTED
            raise InitialConnectError(
                f"Unable to connect to {self.config.broker_uri}: {e}"
            ) from e

        self._mark_connected()
        self._subscribe_all(qos_levels)

    def _mark_connected(self) -> None:
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        self._consecutive_poll_errors = 0
        METRICS.mqtt_connected.set(1)

    def _subscribe_all(self, qos_levels: list[QoS] | None = None) -> None:
        if qos_levels is None:
            qos_levels = self.normalized_qos()

        self.subscriptions.clear()
        for topic, qos in zip(self.config.topics, qos_levels):
            try:
                self.transport.subscribe(topic, qos)
            except TransportOperationError as e:
                raise SubscribeError(
                    f"Error subscribing to topic '{topic}' (QoS {int(qos)}): {e}"
                ) from e
            self.subscriptions[topic] = qos
            logger.info("Subscribed to topic '%s' (QoS %d)", topic, qos)

        METRICS.active_subscriptions.set(len(self.subscriptions))

    def run(self) -> None:
        """Consume transport events until shutdown.

        Returns normally on a clean shutdown: an outgoing disconnect or
        ``stop()``.

        Raises:
            ReconnectExhaustedError: If a lost connection could not be restored.
            PollErrorLimitError: If ``max_poll_errors`` consecutive errors occur.
            SubscribeError: If resubscription after a reconnect fails.
        """
        logger.info("Processing messages...")
        while not self._shutdown.is_set():
            event = self.transport.poll_next_event(self.config.poll_timeout)
            if event is None:
                continue
            if not self._dispatch(event):
                break

    def _dispatch(self, event: Event) -> bool:
        """Handle one event; return False when the loop should end."""
        if isinstance(event, IncomingMessage):
            self._consecutive_poll_errors = 0
            METRICS.messages_received_total.labels(qos=str(event.qos)).inc()
            METRICS.last_message_timestamp.set(time.time())
            self._sink(event)
        elif isinstance(event, ConnAck):
            logger.debug("Connection acknowledged (session_present=%s)", event.session_present)
            self._mark_connected()
        elif isinstance(event, OutgoingDisconnect):
            logger.info("Disconnect acknowledged; shutting down")
            return False
        elif isinstance(event, TransportError):
            if event.kind is ErrorKind.DISCONNECTED:
                return self._handle_connection_lost()
            self._handle_poll_error(event)
        return True

    def _handle_connection_lost(self) -> bool:
        if self.reconnect():
            return True
        if self._shutdown.is_set():
            return False
        self.state = ConnectionState.SHUTTING_DOWN
        raise ReconnectExhaustedError(
            f"Unable to reconnect to {self.config.broker_uri} after "
            f"{self.config.reconnect_attempts} attempts"
        )

    def _handle_poll_error(self, event: TransportError) -> None:
        self._consecutive_poll_errors += 1
        METRICS.poll_errors_total.inc()
        logger.error("Transport error: %s", event.detail or event.kind.value)

        limit = self.config.max_poll_errors
        if limit is not None and self._consecutive_poll_errors >= limit:
            self.state = ConnectionState.SHUTTING_DOWN
            raise PollErrorLimitError(
                f"Giving up after {self._consecutive_poll_errors} consecutive transport errors"
            )
        self._shutdown.wait(self.config.poll_error_delay)

    def reconnect(self) -> bool:
        """Try to restore a lost connection within the configured budget.

        Sleeps ``reconnect_interval`` before each attempt. On success all
        configured topics are subscribed again.

        Returns:
            True if reconnected; False if the budget ran out or shutdown was
            requested.
        """
        self.state = ConnectionState.DISCONNECTED
        METRICS.mqtt_connected.set(0)
        METRICS.connection_losses_total.inc()
        logger.warning("Connection lost. Waiting to retry connection")

        while self.reconnect_attempts < self.config.reconnect_attempts:
            if self._shutdown.wait(self.config.reconnect_interval):
                logger.info("Shutdown requested while reconnecting")
                return False

            self.reconnect_attempts += 1
            self.state = ConnectionState.CONNECTING
            try:
                self.transport.reconnect()
            except TransportOperationError as e:
                self.state = ConnectionState.DISCONNECTED
                METRICS.reconnect_attempts_total.labels(result="failure").inc()
                logger.warning(
                    "Reconnect attempt %d/%d failed: %s",
                    self.reconnect_attempts,
                    self.config.reconnect_attempts,
                    e,
                )
                continue

            METRICS.reconnect_attempts_total.labels(result="success").inc()
            logger.info("Successfully reconnected after %d attempt(s)", self.reconnect_attempts)
            self._mark_connected()
            logger.info("Resubscribing topics...")
            self._subscribe_all()
            return True

        logger.error("Unable to reconnect after %d attempts", self.reconnect_attempts)
        return False

    def stop(self) -> None:
        """Request shutdown; safe to call from any thread."""
        self._shutdown.set()

    def close(self) -> None:
        """Unsubscribe and disconnect if the transport still reports a connection.

        Best effort: failures are logged, never raised.
        """
        self.state = ConnectionState.SHUTTING_DOWN
        if self.transport.is_connected():
            logger.info("Disconnecting")
            topics = list(self.subscriptions) or list(self.config.topics)
            try:
                self.transport.unsubscribe(topics)
            except Exception as e:
                logger.error("Unsubscribe failed during shutdown: %s", e)
            try:
                self.transport.disconnect()
            except Exception as e:
                logger.error("Disconnect failed during shutdown: %s", e)

        self.subscriptions.clear()
        METRICS.mqtt_connected.set(0)
        METRICS.active_subscriptions.set(0)
        logger.info("Exiting")

    def serve(self) -> None:
        """Start, consume events, and always clean up afterwards."""
        try:
            self.start()
            self.run()
        finally:
            self.close()

    def status(self) -> dict[str, Any]:
        """Snapshot of the session for health reporting."""
        return {
            "state": self.state.value,
            "mqtt_connected": self.transport.is_connected(),
            "subscriptions": {topic: int(qos) for topic, qos in dict(self.subscriptions).items()},
            "reconnect_attempts": self.reconnect_attempts,
        }
