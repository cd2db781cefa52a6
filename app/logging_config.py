"""
Logging configuration for the sync backend.

Every module logs through ``logging.getLogger(__name__)``; this module wires
the root logger once at startup.
"""

import logging


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger with a console handler.

    Args:
        level: Log level name, e.g. "DEBUG" or "INFO".
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    _suppress_noisy_loggers()


def _suppress_noisy_loggers() -> None:
    """Raise third-party loggers that are chatty at INFO/DEBUG to WARNING."""
    for name in ("urllib3", "requests", "imapclient", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)
