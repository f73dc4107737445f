"""Logging setup for the ciflow CLI.

User-facing progress goes through `ciflow.ui.console`. Module loggers carry
diagnostics (scheduling, environment acquisition, cancellation) and are
configured here once per process.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s level=%(levelname)s logger=%(name)s thread=%(threadName)s msg=%(message)s"


def configure_logging(level: str = "WARNING", debug: bool = False) -> None:
    """Attach a key=value stderr handler to the `ciflow` logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        debug: Force DEBUG regardless of `level`
    """
    logger = logging.getLogger("ciflow")
    resolved = logging.DEBUG if debug else getattr(logging, level.upper(), logging.WARNING)
    logger.setLevel(resolved)

    # idempotent across repeated CLI invocations in one process (tests)
    for handler in list(logger.handlers):
        if getattr(handler, "_ciflow", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._ciflow = True
    logger.addHandler(handler)
