"""
Logging setup for the eyewear overlay.

Modules log through ``logging.getLogger(__name__)``; the entry point calls
``setup_logging`` once to attach a console handler.
"""

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_configured = False


def setup_logging(level: int = logging.INFO, log_format: Optional[str] = None) -> None:
    """
    Configure the package logger with a single console handler.

    Calling it again only changes the level.

    Args:
        level: Logging level for the ``ar_eyewear`` logger tree
        log_format: Custom format string
    """
    global _configured

    root = logging.getLogger("ar_eyewear")
    root.setLevel(level)

    if _configured:
        for handler in root.handlers:
            handler.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(log_format or LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    _configured = True
