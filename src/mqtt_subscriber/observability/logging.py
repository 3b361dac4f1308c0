"""Structured logging configuration."""

import logging
import sys
from pathlib import Path
from typing import Literal

import structlog

LOG_FILE_NAME = "mqtt-subscriber.log"


def _renderer(format_type: str, colors: bool) -> structlog.typing.Processor:
    if format_type == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=colors)


def setup_logging(
    level: str = "INFO",
    format_type: Literal["json", "console"] = "console",
    log_directory: Path | None = None,
) -> None:
    """Configure structured logging.

    Stdlib ``logging`` records are rendered through structlog, so modules keep
    using ``logging.getLogger(__name__)``. Status lines go to stderr; stdout
    carries only received messages.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format_type: Output format ('json' for production, 'console' for development).
        log_directory: Optional directory that receives a copy of the log.
    """
    shared_processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    def formatter(colors: bool) -> logging.Formatter:
        return structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(format_type, colors),
            ],
        )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter(colors=sys.stderr.isatty()))
    handlers: list[logging.Handler] = [console]

    if log_directory is not None:
        log_directory.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_directory / LOG_FILE_NAME, encoding="utf-8")
        file_handler.setFormatter(formatter(colors=False))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Silence noisy third-party loggers
    logging.getLogger("paho.mqtt").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
