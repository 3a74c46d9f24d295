#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Logging mixin shared by modalrpc components.

Classes inherit from ``ModernLogger`` to get ``debug/info/warning/error``
methods bound to a named logger under the ``modalrpc`` namespace.

Records propagate to the host application's handlers; the package only
attaches a ``NullHandler`` so unconfigured applications stay quiet.

Environment variables:
- MODALRPC_LOG_LEVEL: debug|info|warning|error|critical (default warning)
"""

import logging
import os
from typing import Any, Optional, Union

_ROOT_LOGGER_NAME = "modalrpc"

logging.getLogger(_ROOT_LOGGER_NAME).addHandler(logging.NullHandler())


def resolve_log_level(level: Optional[Union[str, int]] = None) -> int:
    """
    Resolve a level name or number, falling back to MODALRPC_LOG_LEVEL.
    """
    if level is None:
        level = os.getenv("MODALRPC_LOG_LEVEL", "warning")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if isinstance(resolved, int):
        return resolved
    raise ValueError(f"Unknown log level: {level!r}")


class ModernLogger:
    """
    Mixin giving a class its own named logger.

    Args:
        name: Logger name, prefixed with ``modalrpc.`` when not already
        level: Level name or number; ``None`` reads MODALRPC_LOG_LEVEL
    """

    def __init__(self, name: str = _ROOT_LOGGER_NAME, level: Optional[Union[str, int]] = None) -> None:
        if name != _ROOT_LOGGER_NAME and not name.startswith(_ROOT_LOGGER_NAME + "."):
            name = f"{_ROOT_LOGGER_NAME}.{name}"
        self._logger = logging.getLogger(name)
        self._logger.setLevel(resolve_log_level(level))

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def set_log_level(self, level: Union[str, int]) -> None:
        self._logger.setLevel(resolve_log_level(level))

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.critical(msg, *args, **kwargs)
