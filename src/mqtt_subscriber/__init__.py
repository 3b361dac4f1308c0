"""MQTT subscriber: config-driven topic subscription with bounded reconnection."""

__version__ = "0.1.0"
