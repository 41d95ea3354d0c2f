from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Literal, Optional, cast

import structlog
from loguru import logger as loguru_logger
from structlog.exceptions import DropEvent
from structlog.stdlib import BoundLogger
from structlog.typing import EventDict, WrappedLogger

from intune_bulk.config.settings import log_dir


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {message} | {extra}"
DEFAULT_LOG_FILENAME = "intune-bulk.log"


@dataclass(slots=True)
class LoggingOptions:
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False
    file_sink: bool = True
    log_path: Optional[Path] = None
    rotation: str = "10 MB"
    retention: str = "14 days"
    # JSON lines in the file sink, one record per job transition or request.
    serialize: bool = False

    @property
    def console_level(self) -> str:
        return "DEBUG" if self.debug else self.level


_state: dict[str, object] = {"configured": False, "log_path": None}


def configure_logging(options: LoggingOptions | None = None) -> Path | None:
    """Send structlog events to loguru sinks and return the log file path.

    Engine modules log through structlog with keyword context (batch id, job
    id, status). The final processor hands each event to loguru, which owns
    formatting, rotation and retention.
    """

    opts = options or LoggingOptions()

    loguru_logger.remove()
    loguru_logger.add(
        sys.stderr,
        level=opts.console_level,
        colorize=True,
        backtrace=opts.debug,
        diagnose=opts.debug,
        format=LOG_FORMAT,
    )

    log_path: Path | None = None
    if opts.file_sink:
        log_path = opts.log_path or (log_dir() / DEFAULT_LOG_FILENAME)
        loguru_logger.add(
            log_path,
            level="DEBUG",
            rotation=opts.rotation,
            retention=opts.retention,
            enqueue=True,
            encoding="utf-8",
            serialize=opts.serialize,
            format=LOG_FORMAT,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            _forward_to_loguru,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, opts.console_level, logging.INFO),
        ),
        cache_logger_on_first_use=True,
    )

    _state.update(configured=True, log_path=log_path)
    return log_path


def _forward_to_loguru(
    _: WrappedLogger,
    __: str,
    event_dict: EventDict,
) -> EventDict:
    level = str(event_dict.pop("level", "info")).upper()
    message = str(event_dict.pop("event", ""))
    exception = event_dict.pop("exception", None)
    if exception:
        message = f"{message}\n{exception}"
    loguru_logger.bind(**event_dict).opt(depth=6).log(level, message)
    raise DropEvent


def get_logger(*initial_values: object, **initial_kw: object) -> BoundLogger:
    if not _state["configured"]:
        configure_logging(LoggingOptions(file_sink=False))
    return cast(BoundLogger, structlog.get_logger(*initial_values, **initial_kw))


@contextmanager
def batch_context(batch_id: str, **values: object) -> Iterator[None]:
    """Attach ``batch_id`` to every event logged inside the block.

    Context variables are copied into tasks created inside the block, so the
    scheduler's workers inherit it.
    """

    with structlog.contextvars.bound_contextvars(batch_id=batch_id, **values):
        yield


def log_file_path() -> Path | None:
    return cast(Optional[Path], _state["log_path"])


__all__ = [
    "LoggingOptions",
    "batch_context",
    "configure_logging",
    "get_logger",
    "log_file_path",
]
