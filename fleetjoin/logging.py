"""Logging configuration for fleetjoin.

Structured logging via loguru. Library code only binds loggers; output is
disabled until setup_logging() is called, which the CLI does on boot.

Example:
    from fleetjoin.logging import LogConfig, setup_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", file="/var/log/fleetjoin.log"))
    ...
    teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Literal

from loguru import logger

# Disable by default (library behavior)
logger.disable("fleetjoin")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[component]} | {name}:{function}:{line} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum console log level.
        file: Path to log file. None disables file output.
        console: Whether to log to stderr.
        rotation: File rotation policy (e.g., "10 MB", "1 day").
        retention: Number of old log files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "10 MB"
    retention: int = 5


def setup_logging(config: LogConfig) -> list[int]:
    """Enable fleetjoin logging and return handler IDs for cleanup."""
    logger.enable("fleetjoin")
    logger.configure(extra={"component": "fleetjoin"})
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter="fleetjoin",
        ))

    if config.file:
        handler_ids.append(logger.add(
            config.file,
            level="DEBUG",  # File always captures everything
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            diagnose=False,  # Tracebacks must not render local variables (tokens)
            filter="fleetjoin",
        ))

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("fleetjoin")
