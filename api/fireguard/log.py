"""Logger setup for the alert service"""

import logging
import sys

from . import config

FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level=None):
    """Attach a stdout handler to the root logger (once)."""
    root = logging.getLogger()
    root.setLevel(level or config.LOG_LEVEL)

    if any(getattr(h, "_fireguard", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler._fireguard = True
    root.addHandler(handler)

    # the AMQP transport is very chatty at INFO
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("uamqp").setLevel(logging.WARNING)
