from __future__ import annotations

import logging
import os

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

# Third-party loggers that are too chatty at DEBUG.
_QUIET = ("aiohttp.access", "asyncio")


def setup_logging(level: str | int | None = None, *, debug: bool = False) -> None:
    """
    Configure application logging with a consistent, upgrade-friendly formatter.

    ``debug`` (the ``debug_log`` config flag) wins over any explicit level.
    """
    if debug:
        level = logging.DEBUG
    elif level is None:
        level = os.getenv("STOREFRONT_LOG_LEVEL", "INFO")

    if isinstance(level, str):
        level = _LEVELS.get(level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    for name in _QUIET:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
