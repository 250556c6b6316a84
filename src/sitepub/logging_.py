"""Logging setup for the CLI.

Modules log through ``logging.getLogger(__name__)``; only the CLI installs a handler.
"""

import logging


FORMAT = "%(asctime)s %(levelname)s %(name)s | %(message)s"
DATEFMT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(verbose: bool = False) -> None:
    """Attach one stderr handler to the 'sitepub' logger (idempotent)."""
    logger = logging.getLogger("sitepub")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    for handler in list(logger.handlers):
        if getattr(handler, "_sitepub", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=FORMAT, datefmt=DATEFMT))
    handler._sitepub = True
    logger.addHandler(handler)
