"""Observability components: logging, metrics, and health checks."""

from mqtt_subscriber.observability.health import HealthServer, create_health_checker
from mqtt_subscriber.observability.logging import setup_logging
from mqtt_subscriber.observability.metrics import METRICS, MetricsServer

__all__ = ["setup_logging", "METRICS", "MetricsServer", "HealthServer", "create_health_checker"]
