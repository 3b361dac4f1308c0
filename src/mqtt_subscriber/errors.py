"""Error types and process exit codes for the subscriber."""

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes decided at the CLI boundary."""

    OK = 0
    CONFIG_ERROR = 1
    CERTIFICATE_ERROR = 2
    CONNECT_ERROR = 3
    RECONNECT_EXHAUSTED = 4


class SubscriberError(Exception):
    """Base class for fatal subscriber errors."""

    exit_code: ExitCode = ExitCode.CONFIG_ERROR


class ConfigError(SubscriberError):
    """Raised when the configuration file is missing or invalid."""

    exit_code = ExitCode.CONFIG_ERROR


class InvalidQosError(ConfigError):
    """Raised when a configured QoS value is not 0, 1 or 2."""

    def __init__(self, value: object):
        super().__init__(f"Invalid QoS value in configuration: {value!r}")
        self.value = value


class CertificateError(SubscriberError):
    """Raised when TLS certificate or key material cannot be used."""

    exit_code = ExitCode.CERTIFICATE_ERROR


class InitialConnectError(SubscriberError):
    """Raised when the first connection to the broker fails."""

    exit_code = ExitCode.CONNECT_ERROR


class SubscribeError(SubscriberError):
    """Raised when subscribing to a configured topic fails."""

    exit_code = ExitCode.CONNECT_ERROR


class ReconnectExhaustedError(SubscriberError):
    """Raised when the broker could not be reached within the reconnect budget."""

    exit_code = ExitCode.RECONNECT_EXHAUSTED


class PollErrorLimitError(SubscriberError):
    """Raised when too many consecutive transport errors were observed."""

    exit_code = ExitCode.RECONNECT_EXHAUSTED
