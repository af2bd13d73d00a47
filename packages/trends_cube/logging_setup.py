"""Logging configuration for the ``trends_cube`` package.

Public helpers:

- ``configure_logging(...)``: attach one ``StreamHandler`` to the package root
  logger (``"trends_cube"``). Entrypoints (the CLI, ops scripts) call it once
  at startup; ``force=True`` replaces a previous configuration, which the CLI
  uses when ``--log-level`` is given explicitly.
- ``get_logger(name)``: acquire a module logger. Until the package is
  configured the root package logger carries a ``NullHandler`` so library use
  stays silent.
- ``timed(logger, message, *args)``: context manager that logs ``message``
  with the elapsed seconds appended once the block finishes.

Library modules never attach handlers themselves; they call
``get_logger("trends_cube.<module>")`` and leave output to the host.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

_PKG_LOGGER_NAME = "trends_cube"
_LEVEL_ENV = "TRENDS_CUBE_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_handler: logging.Handler | None = None


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.strip():
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelName(name)
        if isinstance(numeric, int):
            return numeric
        raise ValueError(f"Unknown log level: {level!r}")
    env_val = os.getenv(_LEVEL_ENV)
    if env_val and env_val.strip():
        return _parse_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
    force: bool = False,
) -> None:
    """Configure the package root logger.

    Parameters
    ----------
    level:
        ``int`` or level name. ``None`` falls back to ``TRENDS_CUBE_LOG_LEVEL``
        and then to ``logging.INFO``.
    fmt:
        Optional format string (default
        ``"%(asctime)s %(name)s %(levelname)s %(message)s"``).
    stream:
        Destination of the single stream handler (default ``sys.stderr``).
    force:
        Replace an existing configuration instead of keeping it.
    """

    global _handler
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is not None:
        if not force:
            return
        logger.removeHandler(_handler)
        _handler = None

    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False
    _handler = handler


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name, keeping the package silent until configured."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is None and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


@contextmanager
def timed(logger: logging.Logger, message: str, *args: object) -> Iterator[None]:
    """Log ``message % args`` followed by the elapsed time at INFO level."""

    t0 = time.perf_counter()
    try:
        yield
    finally:
        logger.info(message + " (%.3fs)", *args, time.perf_counter() - t0)


__all__ = ["configure_logging", "get_logger", "timed"]
