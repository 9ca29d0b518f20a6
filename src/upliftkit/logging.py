"""Logging for upliftkit.

A fit emits these records through loguru:

- INFO when fitting starts (row and feature counts) and when it finishes
  (split count and depth).
- SPLIT, a custom level between INFO and WARNING, once per committed split,
  with the node index, depth, feature, split value, gain and row count in
  ``record["extra"]``.
- DEBUG for feature classification and for every node left as a leaf.

The ``upliftkit`` logger is disabled on package import. ``enable_logging``
attaches a filtered handler and enables it until the last handle it returned
is disabled.

Note:
    Importing this module removes loguru's default stderr handler (ID 0) so
    that ``enable_logging()`` does not print every record twice. If handler 0
    was already removed, nothing happens.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from pathlib import Path
from typing import TYPE_CHECKING, Final, Literal, TextIO, TypeAlias

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

with contextlib.suppress(ValueError):
    logger.remove(0)

SPLIT_LEVEL: Final[str] = "SPLIT"
SPLIT_LEVEL_NUMBER: Final[int] = 25


def _register_split_level() -> None:
    """Add the SPLIT level to loguru, warning if another number already owns the name."""
    try:
        existing_level = logger.level(SPLIT_LEVEL)
    except ValueError:
        logger.level(SPLIT_LEVEL, no=SPLIT_LEVEL_NUMBER, icon="🌳")
        return
    if existing_level.no != SPLIT_LEVEL_NUMBER:
        msg = (
            f"SPLIT level already registered with numeric value {existing_level.no},"
            f" expected {SPLIT_LEVEL_NUMBER}; split records will use the existing value"
        )
        warnings.warn(msg, stacklevel=2)


_register_split_level()

# Levels emitted by upliftkit, lowest first.
LogLevel: TypeAlias = Literal["DEBUG", "INFO", "SPLIT"]

LogFormat: TypeAlias = Literal["short", "full"]

LogSink: TypeAlias = TextIO | str | Path

_FORMATS: Final[dict[str, str]] = {
    "short": (
        "<green>{time:HH:mm:ss.SSS}</green> | "
        "<level>{level: <5}</level> | "  # noqa: RUF027 - loguru format string
        "<cyan>{function}</cyan> - <level>{message}</level> {extra}"
    ),
    "full": (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <5}</level> | "  # noqa: RUF027 - loguru format string
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level> {extra}"
    ),
}

# Handler IDs added by enable_logging and not yet removed.
_active_handler_ids: set[int] = set()
_handler_lock = threading.Lock()


class LoggingHandle:
    """Owns one handler added by ``enable_logging``.

    Examples:
        >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
        ...     model.fit(df, "treatment", "converted")
    """

    def __init__(self, handler_id: int) -> None:
        self.handler_id: int | None = handler_id

    @property
    def is_active(self) -> bool:
        return self.handler_id is not None

    def disable(self) -> None:
        """Remove the handler. Disabling the last active handle silences upliftkit again; repeat calls do nothing."""
        with _handler_lock:
            if self.handler_id is None:
                return
            _active_handler_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not _active_handler_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.disable()


def active_handler_count() -> int:
    """Return how many handles from ``enable_logging`` are still active."""
    with _handler_lock:
        return len(_active_handler_ids)


def enable_logging(
    *,
    level: LogLevel = SPLIT_LEVEL,
    log_format: LogFormat = "short",
    sink: LogSink | None = None,
) -> LoggingHandle:
    """Show upliftkit records while fitting.

    Args:
        level (LogLevel): Minimum level to show. "SPLIT" (default) prints one
            line per committed split, "INFO" adds the fit start and finish
            lines, and "DEBUG" adds every node that stayed a leaf.
        log_format (LogFormat): "short" prints the time of day and function
            name; "full" prints the date and ``module:function:line``.
        sink (LogSink | None): Stream or file path to write to. Defaults to
            ``sys.stderr`` at call time. A path receives the split trace of
            a long fit as a log file.

    Returns:
        LoggingHandle: Handle that removes the handler again.

    Note:
        Disabling the last active handle calls ``logger.disable("upliftkit")``,
        which also silences handlers your application attached on its own.
    """
    with _handler_lock:
        logger.enable(PACKAGE_NAME)
        handler_id = logger.add(
            sys.stderr if sink is None else sink,
            level=level,
            filter=_is_upliftkit_record,
            format=_FORMATS[log_format],
        )
        _active_handler_ids.add(handler_id)
    return LoggingHandle(handler_id)


def _is_upliftkit_record(record: Record) -> bool:
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
