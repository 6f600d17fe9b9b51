"""
cartpy.logging
==============

cartpy logs through loguru and is silent by default: the package calls
``logger.disable("cartpy")`` on import.  ``enable_logging`` adds a handler
(stderr unless another sink is given) that only receives cartpy records and
returns a handle that removes it again, either explicitly or as a context
manager.

Importing this module removes loguru's default stderr handler (ID 0) so cartpy
records are not printed twice once ``enable_logging`` adds its own handler.
"""

from __future__ import annotations

import contextlib
import sys
from typing import Literal

from loguru import logger

PACKAGE_NAME = __name__.split(".")[0]

with contextlib.suppress(ValueError):
    logger.remove(0)

LogLevel = Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["short", "full"]

# handler ids of live LoggingHandle objects
_handler_ids: list[int] = []

_SHORT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{function}</cyan> - "
    "<level>{message}</level>"
)
_FULL_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


class LoggingHandle:
    """Stderr (or custom sink) handler added by :func:`enable_logging`.

    Examples
    --------
    >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
    ...     build_tree(dataset)
    """

    def __init__(self, handler_id: int, level: str):
        self.handler_id: int | None = handler_id
        self.level = level
        _handler_ids.append(handler_id)

    @property
    def active(self) -> bool:
        return self.handler_id is not None

    def disable(self) -> None:
        """Remove the handler; cartpy goes silent again once no handle is active."""
        if self.handler_id is None:
            return
        with contextlib.suppress(ValueError):
            logger.remove(self.handler_id)
        _handler_ids.remove(self.handler_id)
        self.handler_id = None
        if not _handler_ids:
            logger.disable(PACKAGE_NAME)

    def __enter__(self) -> "LoggingHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disable()

    def __repr__(self) -> str:
        state = f"handler_id={self.handler_id}" if self.active else "disabled"
        return f"LoggingHandle({state}, level={self.level!r})"


def active_handler_count() -> int:
    """Number of handlers added by :func:`enable_logging` and not yet removed."""
    return len(_handler_ids)


def enable_logging(*, level: LogLevel = "INFO", log_format: LogFormat = "short", sink=None) -> LoggingHandle:
    """
    Enable cartpy logging.

    Parameters
    ----------
    level : str, default="INFO"
        Minimum level to display.  ``"INFO"`` shows cross-validation progress
        and the selected complexity parameter; ``"DEBUG"`` adds every tree
        build and pruning path.
    log_format : {"short", "full"}, default="short"
        ``"short"`` shows the function name only, ``"full"`` adds the module
        and line number.
    sink : file-like, path or callable, optional
        Any loguru sink; defaults to ``sys.stderr``.

    Returns
    -------
    LoggingHandle
        Handle that removes the handler again.
    """
    logger.enable(PACKAGE_NAME)
    handler_id = logger.add(
        sys.stderr if sink is None else sink,
        level=level,
        filter=_is_cartpy_record,
        format=_SHORT_FORMAT if log_format == "short" else _FULL_FORMAT,
    )
    return LoggingHandle(handler_id, level)


def _is_cartpy_record(record) -> bool:
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
