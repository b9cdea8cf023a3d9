"""Process-wide logging setup for the API server."""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    """Route all records to stderr and set the level for the greensnap loggers."""
    root_logger = logging.getLogger()

    # Clear existing handlers to prevent duplicate logs
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(level)

    # stderr for uvicorn compatibility
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(console_handler)

    app_logger = logging.getLogger("greensnap")
    app_logger.setLevel(level)
    app_logger.propagate = True

    root_logger.info("Logging initialized at %s", logging.getLevelName(level))
