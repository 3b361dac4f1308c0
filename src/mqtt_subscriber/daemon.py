"""Process-level orchestration for the MQTT subscriber."""

import logging
import signal
from typing import Any

from mqtt_subscriber.config import SubscriberConfig
from mqtt_subscriber.mqtt.transport import create_transport
from mqtt_subscriber.observability.health import HealthServer, create_health_checker
from mqtt_subscriber.observability.logging import setup_logging
from mqtt_subscriber.observability.metrics import METRICS, MetricsServer
from mqtt_subscriber.output import MessagePrinter, MessageSink
from mqtt_subscriber.session import ConnectionManager

logger = logging.getLogger(__name__)


class SubscriberDaemon:
    """Wires configuration, transport, output and observability together."""

    def __init__(self, config: SubscriberConfig, sink: MessageSink | None = None):
        """Initialize the daemon.

        TLS material is validated here, so certificate problems surface before
        any network attempt.

        Args:
            config: Subscriber configuration.
            sink: Destination for received messages; defaults to stdout.

        Raises:
            CertificateError: If TLS material is unreadable or malformed.
        """
        self.config = config
        self.transport = create_transport(config)
        self.manager = ConnectionManager(config, self.transport, sink or MessagePrinter())

        self.metrics_server: MetricsServer | None = None
        if config.metrics_port is not None:
            self.metrics_server = MetricsServer(config.metrics_port)

        self.health_server: HealthServer | None = None
        if config.health_port is not None:
            self.health_server = HealthServer(
                config.health_port,
                check_func=create_health_checker(self.manager),
            )

        METRICS.mqtt_connected.set(0)

    def run(self) -> None:
        """Run until clean shutdown; fatal errors propagate to the caller."""
        logger.info("Starting MQTT subscriber for %s", self.config.broker_uri)

        if self.metrics_server:
            self.metrics_server.start()
        if self.health_server:
            self.health_server.start()

        try:
            self.manager.serve()
        finally:
            if self.health_server:
                self.health_server.stop()
            if self.metrics_server:
                self.metrics_server.stop()

    def shutdown(self) -> None:
        """Request a graceful shutdown."""
        self.manager.stop()


def run_subscriber(config: SubscriberConfig) -> None:
    """Run the subscriber with logging and signal handling set up.

    Args:
        config: Subscriber configuration.
    """
    setup_logging(
        level=config.log_level,
        format_type=config.log_format,
        log_directory=config.log_directory,
    )

    daemon = SubscriberDaemon(config)

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info("Received signal %d", signum)
        daemon.shutdown()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    daemon.run()
