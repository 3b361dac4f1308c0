"""Configuration models for the MQTT subscriber."""

from pathlib import Path
from typing import Literal
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from mqtt_subscriber.errors import ConfigError
from mqtt_subscriber.qos import QosPolicy

Scheme = Literal["tcp", "mqtt", "ssl", "mqtts"]

ENCRYPTED_SCHEMES: frozenset[str] = frozenset({"ssl", "mqtts"})


class WillConfig(BaseModel):
    """Last Will and Testament published by the broker on unclean disconnect."""

    model_config = ConfigDict(frozen=True)

    topic: str
    payload: str = ""
    qos: Literal[0, 1, 2] = 0
    retain: bool = False


class SubscriberConfig(BaseModel):
    """Immutable configuration snapshot for one subscriber process."""

    model_config = ConfigDict(frozen=True)

    scheme: Scheme | None = None
    """Transport scheme; ``ssl``/``mqtts`` select TLS, anything else plain TCP."""

    broker_address: str
    broker_port: int = Field(ge=1, le=65535)
    client_id: str

    topics: list[str] = Field(default_factory=list)
    """Topic filters; pair positionally with ``qos``."""

    qos: list[int] = Field(default_factory=list)
    """Requested QoS per topic. Validated by the normalizer, not here."""

    clean_session: bool = True
    username: str | None = None
    password: SecretStr | None = None

    ca_cert_path: Path | None = None
    """PEM bundle of trusted CA certificates."""

    client_combined_path: Path | None = None
    """PEM file holding the client certificate chain and its PKCS#8 key."""

    keepalive: int = Field(default=20, gt=0)
    connect_timeout: float = Field(default=30.0, gt=0)
    reconnect_attempts: int = Field(default=12, ge=0)
    reconnect_interval: float = Field(default=5.0, ge=0)
    poll_error_delay: float = Field(default=1.0, ge=0)
    max_poll_errors: int | None = Field(default=None, gt=0)
    """Consecutive non-disconnect poll errors tolerated; None means unbounded."""

    poll_timeout: float = Field(default=1.0, gt=0)
    qos_policy: QosPolicy = "replicate_first"
    transport: Literal["threaded", "inline"] = "threaded"
    will: WillConfig | None = None

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"
    log_directory: Path | None = None
    metrics_port: int | None = None
    health_port: int | None = None

    @property
    def use_tls(self) -> bool:
        """Whether the configured scheme requires an encrypted transport."""
        return self.scheme in ENCRYPTED_SCHEMES

    @property
    def broker_uri(self) -> str:
        """Broker endpoint in ``scheme://host:port`` form, for display."""
        return f"{self.scheme or 'tcp'}://{self.broker_address}:{self.broker_port}"

    @classmethod
    def from_yaml(cls, path: Path) -> "SubscriberConfig":
        """Load configuration from a YAML file.

        Raises:
            ConfigError: If the file cannot be read, parsed or validated.
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Error opening config file '{path}': {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Error parsing config file '{path}': {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file '{path}' must contain a mapping")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config file '{path}': {e}") from e


class SubscriberSettings(BaseSettings):
    """Environment-based settings that locate the config file."""

    model_config = SettingsConfigDict(
        env_prefix="MQTT_SUBSCRIBER_",
        env_nested_delimiter="__",
    )

    config_file: Path = Path("config.yaml")


def load_config(settings: SubscriberSettings | None = None) -> SubscriberConfig:
    """Load configuration from the file named by the settings.

    Unlike a daemon with sensible defaults, the subscriber cannot run without
    a broker and client id, so a missing file is an error.

    Raises:
        ConfigError: If the file is absent or invalid.
    """
    if settings is None:
        settings = SubscriberSettings()

    if not settings.config_file.exists():
        raise ConfigError(f"Config file not found: {settings.config_file}")
    return SubscriberConfig.from_yaml(settings.config_file)


def apply_broker_uri(config: SubscriberConfig, uri: str) -> SubscriberConfig:
    """Override the broker endpoint with a ``scheme://host:port`` URI.

    Missing parts keep their configured values.

    Raises:
        ConfigError: If the URI is malformed or uses an unknown scheme.
    """
    if "://" not in uri:
        uri = f"{config.scheme or 'tcp'}://{uri}"
    try:
        parts = urlsplit(uri)
        port = parts.port
    except ValueError as e:
        raise ConfigError(f"Invalid broker URI '{uri}': {e}") from e

    if parts.scheme not in ("tcp", "mqtt", "ssl", "mqtts"):
        raise ConfigError(f"Unsupported broker URI scheme: {parts.scheme!r}")
    if not parts.hostname:
        raise ConfigError(f"Broker URI has no host: '{uri}'")

    return config.model_copy(
        update={
            "scheme": parts.scheme,
            "broker_address": parts.hostname,
            "broker_port": port if port is not None else config.broker_port,
        }
    )
