"""Logging configuration for clusterup.

Diagnostics go to stderr so they never mix with task output on stdout.
With --log-file they are written to the file as JSON lines instead.
"""

import logging
import sys
from pathlib import Path

import structlog

# -v count -> log level
VERBOSITY_LEVELS = {0: "warning", 1: "info"}

# Chatty libraries only log at debug verbosity
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")

SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def level_for_verbosity(verbose: int) -> str:
    """Map the CLI's -v count to a log level name."""
    return VERBOSITY_LEVELS.get(verbose, "debug")


def _handler(log_file: str | Path | None) -> logging.Handler:
    if log_file:
        return logging.FileHandler(str(log_file))
    return logging.StreamHandler(sys.stderr)


def configure_logging(
    level: str = "warning",
    log_file: str | Path | None = None,
    json_output: bool = False,
) -> None:
    """Configure standard logging and structlog.

    Args:
        level: Log level name (debug, info, warning, error, critical)
        log_file: Write to this file instead of stderr
        json_output: Render events as JSON instead of console lines
    """
    log_level = getattr(logging, level.upper(), logging.WARNING)
    handler = _handler(log_file)
    handler.setLevel(log_level)
    logging.basicConfig(level=log_level, handlers=[handler], format="%(message)s", force=True)

    if log_level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=not log_file and sys.stderr.isatty())

    structlog.configure(
        processors=[*SHARED_PROCESSORS, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to a module name."""
    return structlog.get_logger(name)
