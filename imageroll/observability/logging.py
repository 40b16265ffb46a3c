"""Logging configuration for imageroll.

imageroll logs through loguru and stays silent as a library: nothing is
emitted until ``setup_logging`` enables the ``imageroll`` namespace. The CLI
does this from the ``[logging]`` table of imageroll.toml.

Every record can carry context bound by the code that emits it
(``component``, ``provider``) or by the ``audit`` decorator around a Client
operation (``operation``). Those keys are rendered after the module name:

    12:00:01 INFO    imageroll.replacement [component=replacement operation=Replace] Replaced i-abc with i-new

Example:
    handler_ids = setup_logging(LogConfig(level="DEBUG", file=".imageroll/imageroll.log"))
    try:
        await client.replace("web-01", "ami-999")
    finally:
        teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, get_args

from loguru import logger

from imageroll.core.exceptions import ConfigurationError

logger.disable("imageroll")

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

LEVELS: tuple[str, ...] = get_args(LogLevel.__value__)

CONTEXT_KEYS = ("component", "provider", "operation", "instance_id")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> "
    "<level>{level: <7}</level> "
    "<cyan>{name}</cyan><dim>{extra[_ctx]}</dim> "
    "{message}"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line}{extra[_ctx]} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where imageroll logs go.

    Attributes:
        level: Minimum level for the console sink.
        file: Log file path; None disables the file sink. The file always
            records DEBUG and above.
        console: Whether to log to stderr.
        rotation: File rotation policy (e.g. "50 MB", "1 day").
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10

    def __post_init__(self) -> None:
        if self.level not in LEVELS:
            raise ConfigurationError(
                f"invalid log level '{self.level}'. Valid: {', '.join(LEVELS)}"
            )


def _render_context(record: Any) -> None:
    extra = record["extra"]
    pairs = " ".join(f"{k}={extra[k]}" for k in CONTEXT_KEYS if k in extra)
    extra["_ctx"] = f" [{pairs}]" if pairs else ""


def _add_console(config: LogConfig) -> int:
    return logger.add(
        sys.stderr,
        level=config.level,
        format=CONSOLE_FORMAT,
        colorize=True,
        filter="imageroll",
    )


def _add_file(config: LogConfig, path: str) -> int:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return logger.add(
        path,
        level="DEBUG",
        format=FILE_FORMAT,
        rotation=config.rotation,
        retention=config.retention,
        compression="zip",
        diagnose=False,
    )


def setup_logging(config: LogConfig) -> list[int]:
    """Enable imageroll logging and return the IDs of the sinks it added."""
    # Drop loguru's unfiltered default stderr sink.
    logger.remove()
    logger.configure(patcher=_render_context)
    logger.enable("imageroll")

    handler_ids: list[int] = []
    if config.console:
        handler_ids.append(_add_console(config))
    if config.file:
        handler_ids.append(_add_file(config, config.file))
    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove the sinks added by ``setup_logging`` and silence imageroll again."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("imageroll")
