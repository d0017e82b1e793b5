"""
Single place where log output is configured.

Modules only call ``logging.getLogger(__name__)``; the app calls
:func:`configure_logging` once at import time.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger with the service format and ``level``."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)
    # uvicorn installs its own handlers, keep its access log in the same shape
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        for handler in logging.getLogger(name).handlers:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
