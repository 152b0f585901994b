"""
Logging setup.

Modules log through `logging.getLogger(__name__)` with `event key=value`
messages; this only wires the root handler once per process.
"""

from __future__ import annotations

import logging

from . import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    resolved = (level or settings.log_level()).upper()
    numeric = logging.getLevelName(resolved)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric)
    # httpx logs every request at INFO; engine calls are logged by us instead.
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))
