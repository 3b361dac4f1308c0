"""Prometheus metrics for the MQTT subscriber."""

import threading
from http.server import HTTPServer, SimpleHTTPRequestHandler
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    generate_latest,
)


class SubscriberMetrics:
    """Collection of Prometheus metrics for the subscriber."""

    def __init__(self) -> None:
        """Initialize metrics."""
        # Counters
        self.messages_received_total = Counter(
            "mqtt_subscriber_messages_received_total",
            "Total number of application messages received",
            ["qos"],
        )

        self.reconnect_attempts_total = Counter(
            "mqtt_subscriber_reconnect_attempts_total",
            "Total number of reconnect attempts",
            ["result"],  # 'success' or 'failure'
        )

        self.connection_losses_total = Counter(
            "mqtt_subscriber_connection_losses_total",
            "Total number of detected connection losses",
        )

        self.poll_errors_total = Counter(
            "mqtt_subscriber_poll_errors_total",
            "Total number of transport errors not classified as disconnection",
        )

        # Gauges
        self.mqtt_connected = Gauge(
            "mqtt_subscriber_mqtt_connected",
            "MQTT connection status (1=connected, 0=disconnected)",
        )

        self.active_subscriptions = Gauge(
            "mqtt_subscriber_active_subscriptions",
            "Number of topic filters currently subscribed",
        )

        self.last_message_timestamp = Gauge(
            "mqtt_subscriber_last_message_timestamp",
            "Unix timestamp of the last received message",
        )


# Global metrics instance
METRICS = SubscriberMetrics()


class MetricsHandler(SimpleHTTPRequestHandler):
    """HTTP handler for Prometheus metrics endpoint."""

    def do_GET(self) -> None:
        """Handle GET requests."""
        if self.path == "/metrics":
            self.send_response(200)
            self.send_header("Content-Type", CONTENT_TYPE_LATEST)
            self.end_headers()
            self.wfile.write(generate_latest())
        else:
            self.send_response(404)
            self.end_headers()

    def log_message(self, format: str, *args: Any) -> None:
        """Suppress request logging."""
        pass


class MetricsServer:
    """HTTP server for Prometheus metrics."""

    def __init__(self, port: int = 9090):
        """Initialize the metrics server.

        Args:
            port: Port to listen on.
        """
        self.port = port
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the metrics server in a background thread."""
        self._server = HTTPServer(("0.0.0.0", self.port), MetricsHandler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the metrics server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
