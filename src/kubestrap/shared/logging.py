"""Logging configuration for kubestrap.

structlog on top of standard logging. Interactive installs get the console
renderer on stderr; unattended installs write JSON lines to a file. Every
event emitted while a pipeline step runs carries that step's name.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

# Per-request chatter from the HTTP stack during readiness probing
NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    level: str = "info",
    log_file: str | Path | None = None,
    json_output: bool = False,
) -> None:
    """Configure logging for the application.

    Args:
        level: Log level (debug, info, warning, error, critical)
        log_file: Optional path to a log file for the installer's own output
        json_output: If True, output JSON format

    Usage:
        Interactive install: configure_logging("warning")
        Verbose install: configure_logging("debug")
        Unattended install: configure_logging("info", log_file=path, json_output=True)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(str(log_file))
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    logging.basicConfig(level=log_level, handlers=[handler], format="%(message)s", force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def log_context(**values) -> Iterator[None]:
    """Attach values to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
