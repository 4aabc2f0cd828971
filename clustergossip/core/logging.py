"""Loguru setup shared by the CLI and the gossip daemon."""

from __future__ import annotations

import sys
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from .config import ClusterSettings

PACKAGE_PREFIX = "clustergossip."

LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} - {message}"
)


def in_scope(module: str, scopes: Iterable[str]) -> bool:
    """True when ``module`` lives under one of the dotted ``scopes``.

    Short scopes such as ``cluster.node`` are resolved against the package,
    so they match ``clustergossip.cluster.node`` as well.
    """
    for scope in scopes:
        if module.startswith(scope):
            return True
        if not scope.startswith(PACKAGE_PREFIX) and module.startswith(
            PACKAGE_PREFIX + scope
        ):
            return True
    return False


def configure_logging(
    level: str,
    *,
    debug_scopes: Iterable[str] = (),
    colorize: bool = False,
    sink: Any = sys.stderr,
) -> tuple[int, ...]:
    """Replace all loguru handlers and return the ids of the new ones.

    With ``debug_scopes`` a second handler lets DEBUG records from those
    modules through while the main handler stays at ``level``.
    """
    logger.remove()
    handler_ids = [logger.add(sink, level=level, format=LOG_FORMAT, colorize=colorize)]

    scopes = tuple(scope.strip() for scope in debug_scopes if scope.strip())
    if not scopes or level.upper() == "DEBUG":
        return tuple(handler_ids)

    def scoped_debug(record: dict[str, Any]) -> bool:
        return record["level"].name == "DEBUG" and in_scope(
            record["name"] or "", scopes
        )

    handler_ids.append(
        logger.add(
            sink,
            level="DEBUG",
            format=LOG_FORMAT,
            colorize=colorize,
            filter=scoped_debug,
        )
    )
    return tuple(handler_ids)


def configure_from_settings(
    settings: ClusterSettings, *, colorize: bool = False, sink: Any = sys.stderr
) -> tuple[int, ...]:
    return configure_logging(
        settings.log_level,
        debug_scopes=settings.log_debug_scopes,
        colorize=colorize,
        sink=sink,
    )
