"""Central logging configuration helpers for mpbench.

Benchmark runs log one line per endpoint per report interval at INFO, while
the hot paths (publish, receive, request) log at DEBUG. Turning DEBUG on for
everything drowns the reports, so DEBUG can be enabled per module scope:
``tracker`` shows gap detection, ``endpoints`` the per-message traffic,
``transport`` the in-process bus.
"""

from __future__ import annotations

import sys
from collections.abc import Iterable
from typing import Any

from loguru import logger

DEFAULT_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} - {message}"
)

PACKAGE = "mpbench"
# scopes are looked up relative to these packages, most specific last
SCOPE_ROOTS = (PACKAGE, f"{PACKAGE}.core")


def scope_prefixes(scope: str) -> tuple[str, ...]:
    """Module name prefixes a debug scope selects.

    ``"tracker"`` selects ``mpbench.tracker`` and ``mpbench.core.tracker``;
    ``"transport.inprocess"`` selects ``mpbench.core.transport.inprocess``;
    a fully qualified ``"mpbench.cli"`` selects only itself.
    """
    scope = scope.strip().strip(".")
    if not scope:
        return ()
    if scope == PACKAGE or scope.startswith(f"{PACKAGE}."):
        return (scope,)
    return tuple(f"{root}.{scope}" for root in SCOPE_ROOTS)


def _matches(record_name: str, prefixes: Iterable[str]) -> bool:
    return any(
        record_name == prefix or record_name.startswith(f"{prefix}.")
        for prefix in prefixes
    )


def configure_logging(
    level: str,
    *,
    debug_scopes: Iterable[str] = (),
    colorize: bool = False,
) -> tuple[int, ...]:
    """Configure loguru, optionally enabling DEBUG for selected scopes only.

    Returns the ids of the installed handlers.
    """
    logger.remove()

    handler_ids: list[int] = [
        logger.add(
            sys.stderr,
            level=level,
            format=DEFAULT_LOG_FORMAT,
            colorize=colorize,
        )
    ]

    prefixes = tuple(
        prefix for scope in debug_scopes for prefix in scope_prefixes(scope)
    )
    if prefixes and level.upper() != "DEBUG":

        def _debug_filter(record: dict[str, Any]) -> bool:
            return record["level"].name == "DEBUG" and _matches(
                record["name"] or "", prefixes
            )

        handler_ids.append(
            logger.add(
                sys.stderr,
                level="DEBUG",
                format=DEFAULT_LOG_FORMAT,
                colorize=colorize,
                filter=_debug_filter,
            )
        )

    return tuple(handler_ids)
