"""Health check endpoint for the MQTT subscriber."""

import json
import threading
import time
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Protocol

HealthCheck = Callable[[], dict[str, Any]]


class StatusSource(Protocol):
    """Anything that can report a session status snapshot."""

    def status(self) -> dict[str, Any]: ...


class HealthHTTPServer(HTTPServer):
    """HTTP server carrying the health check its handlers call."""

    def __init__(self, address: tuple[str, int], check_func: HealthCheck | None = None):
        super().__init__(address, HealthHandler)
        self.check_func = check_func


class HealthHandler(BaseHTTPRequestHandler):
    """HTTP handler for health check endpoint."""

    server: HealthHTTPServer

    def _check(self) -> dict[str, Any] | None:
        check_func = self.server.check_func
        return check_func() if check_func else None

    def do_GET(self) -> None:
        """Handle GET requests."""
        if self.path == "/health":
            self._handle_health()
        elif self.path == "/ready":
            self._handle_ready()
        elif self.path == "/live":
            self._handle_live()
        else:
            self.send_response(404)
            self.end_headers()

    def _handle_health(self) -> None:
        """Handle /health endpoint."""
        health = self._check() or {"status": "unknown"}

        status_code = 200 if health.get("status") == "healthy" else 503

        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(health).encode())

    def _handle_ready(self) -> None:
        """Handle /ready endpoint: ready once subscribed on a live connection."""
        ready = False
        health = self._check()
        if health:
            ready = bool(health.get("mqtt_connected")) and health.get("state") == "connected"

        self.send_response(200 if ready else 503)
        self.end_headers()

    def _handle_live(self) -> None:
        """Handle /live endpoint."""
        self.send_response(200)
        self.end_headers()

    def log_message(self, format: str, *args: Any) -> None:
        """Suppress request logging."""
        pass


class HealthServer:
    """HTTP server for health checks."""

    def __init__(
        self,
        port: int = 8080,
        check_func: HealthCheck | None = None,
    ):
        """Initialize the health server.

        Args:
            port: Port to listen on.
            check_func: Function that returns health status dict.
        """
        self.port = port
        self._check_func = check_func
        self._server: HealthHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the health server in a background thread."""
        self._server = HealthHTTPServer(("0.0.0.0", self.port), self._check_func)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the health server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()


def create_health_checker(manager: StatusSource) -> HealthCheck:
    """Create a health check function over a connection manager.

    Args:
        manager: Status source, normally a ``ConnectionManager``.

    Returns:
        Function that returns health status dict.
    """

    def check() -> dict[str, Any]:
        status = manager.status()
        healthy = status["mqtt_connected"] and status["state"] == "connected"
        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": int(time.time() * 1000),
            **status,
        }

    return check
