"""Command-line interface for the MQTT subscriber."""

from pathlib import Path
from typing import Annotated, Optional

import typer

from mqtt_subscriber import __version__
from mqtt_subscriber.config import (
    SubscriberConfig,
    SubscriberSettings,
    apply_broker_uri,
    load_config,
)
from mqtt_subscriber.errors import SubscriberError

app = typer.Typer(
    name="mqtt-subscriber",
    help="Subscribe to MQTT topics from a YAML configuration and print received messages",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config.yaml"),
]


@app.callback()
def callback() -> None:
    """MQTT subscriber CLI."""
    pass


def _load(config: Path | None) -> SubscriberConfig:
    settings = SubscriberSettings(config_file=config) if config else SubscriberSettings()
    return load_config(settings)


def _fail(error: SubscriberError) -> typer.Exit:
    typer.echo(f"Error: {error}", err=True)
    return typer.Exit(int(error.exit_code))


@app.command()
def run(
    broker: Annotated[
        Optional[str],
        typer.Argument(help="Broker URI overriding the config, e.g. tcp://host:1883"),
    ] = None,
    config: ConfigOption = None,
) -> None:
    """Connect, subscribe and print messages until shut down."""
    from mqtt_subscriber.daemon import run_subscriber

    try:
        cfg = _load(config)
        if broker:
            cfg = apply_broker_uri(cfg, broker)
        run_subscriber(cfg)
    except SubscriberError as e:
        raise _fail(e) from e


@app.command()
def validate(config: ConfigOption = None) -> None:
    """Validate the configuration without connecting."""
    from mqtt_subscriber.qos import normalize_qos

    try:
        cfg = _load(config)
        qos_levels = normalize_qos(cfg.topics, cfg.qos, cfg.qos_policy)
    except SubscriberError as e:
        raise _fail(e) from e

    typer.echo("Configuration valid")
    typer.echo(f"  Broker: {cfg.broker_uri}")
    typer.echo(f"  Client ID: {cfg.client_id}")
    typer.echo(f"  TLS: {cfg.use_tls}")
    for topic, qos in zip(cfg.topics, qos_levels):
        typer.echo(f"  Topic: {topic} (QoS {int(qos)})")


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"mqtt-subscriber {__version__}")


@app.command()
def status(config: ConfigOption = None) -> None:
    """Check the status of a running subscriber through its health endpoint."""
    import httpx

    try:
        cfg = _load(config)
    except SubscriberError as e:
        raise _fail(e) from e

    if cfg.health_port is None:
        typer.echo("health_port is not configured", err=True)
        raise typer.Exit(1)

    try:
        resp = httpx.get(f"http://localhost:{cfg.health_port}/health", timeout=5.0)
    except httpx.ConnectError:
        typer.echo("Subscriber is not running or health endpoint unreachable", err=True)
        raise typer.Exit(1)

    data = resp.json()
    typer.echo(f"Status: {data.get('status', 'unknown')}")
    typer.echo(f"State: {data.get('state', 'unknown')}")
    typer.echo(f"MQTT connected: {data.get('mqtt_connected', False)}")
    for topic, qos in data.get("subscriptions", {}).items():
        typer.echo(f"  Subscribed: {topic} (QoS {qos})")
    if resp.status_code != 200:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
