"""Observability for imageroll: loguru-based logging configuration."""

from .logging import (
    CONSOLE_FORMAT,
    FILE_FORMAT,
    LEVELS,
    LogConfig,
    LogLevel,
    setup_logging,
    teardown_logging,
)

__all__ = [
    "LogConfig",
    "LogLevel",
    "CONSOLE_FORMAT",
    "FILE_FORMAT",
    "LEVELS",
    "setup_logging",
    "teardown_logging",
]
