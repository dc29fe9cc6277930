"""
Structured logging setup.

Three independent pipelines:
1. File (JSON) -- if config.file is set. Captures everything (DEBUG+).
2. Human handler (stderr) -- only HUMAN events: what the catalog is doing.
3. Technical console (stderr) -- DEBUG/INFO, controlled by -v. Excludes HUMAN.

Default behavior (no -v): the user sees only HUMAN logs (refreshes,
fallbacks, quota waits). With -v: adds INFO. With -vv: adds DEBUG.
With --quiet: silences everything.
"""

import logging
import sys
from pathlib import Path

import structlog

from ..config.schema import LoggingConfig
from .human import HumanLogHandler
from .levels import HUMAN


def configure_logging(
    config: LoggingConfig,
    json_output: bool = False,
    quiet: bool = False,
) -> None:
    """Configure the full logging system with its three pipelines.

    Args:
        config: Logging configuration (level, file, verbose)
        json_output: If True, disables human and console handlers (--json)
        quiet: If True, disables human and console handlers (--quiet)
    """
    logging.root.handlers.clear()
    structlog.reset_defaults()

    # Root logger captures everything; handlers filter by level
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[],
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    show_human = not quiet and not json_output and config.level in ("human", "info", "debug")
    show_console = not quiet and not json_output

    # ── Pipeline 1: JSON file ─────────────────────────────────────────────
    if config.file:
        file_path = Path(config.file).expanduser()
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(file_path), encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        logging.root.addHandler(file_handler)

    # ── Pipeline 2: Human handler ─────────────────────────────────────────
    if show_human:
        human_handler = HumanLogHandler(stream=sys.stderr)
        human_handler.setLevel(HUMAN)
        human_handler.addFilter(lambda record: record.levelno == HUMAN)
        logging.root.addHandler(human_handler)

    # ── Pipeline 3: Technical console ─────────────────────────────────────
    if show_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(_console_level(config))
        console_handler.addFilter(lambda record: record.levelno != HUMAN)

        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.dev.ConsoleRenderer(
                    colors=sys.stderr.isatty(),
                ),
                foreign_pre_chain=shared_processors,
            )
        )

        logging.root.addHandler(console_handler)

    # ── structlog ─────────────────────────────────────────────────────────
    # Each handler renders on its own, so the event dict reaches them intact
    processors = shared_processors + [
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _console_level(config: LoggingConfig) -> int:
    """Resolve the console handler level from -v count and configured level.

    No -v  -> the configured level, but never below WARNING for "human"
    -v     -> INFO
    -vv+   -> DEBUG
    """
    if config.verbose >= 2:
        return logging.DEBUG
    if config.verbose == 1:
        return logging.INFO

    levels = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "human": logging.WARNING,
        "warn": logging.WARNING,
        "error": logging.ERROR,
    }
    return levels[config.level]


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)
