"""Rendering of received messages."""

from collections.abc import Callable
from typing import TextIO

import typer

from mqtt_subscriber.mqtt.events import IncomingMessage

MessageSink = Callable[[IncomingMessage], None]


def format_message(message: IncomingMessage) -> str:
    """Render a message as a single human-readable line."""
    payload = message.payload.decode("utf-8", errors="replace")
    return f"{message.topic} [QoS {message.qos}]: {payload}"


class MessagePrinter:
    """Writes each received message to stdout, one line per message."""

    def __init__(self, file: TextIO | None = None):
        self._file = file

    def __call__(self, message: IncomingMessage) -> None:
        typer.echo(format_message(message), file=self._file)
