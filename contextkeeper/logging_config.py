"""
Logging configuration for contextkeeper.

Quiet by default: the CLI prints its own messages, and the store only
logs at DEBUG level.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "contextkeeper"
OPS_LOG_FILENAME = "ck-ops.log"


def configure_quiet_mode(quiet: bool = True):
    """
    Keep library output to warnings and above.

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if quiet:
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        if logger.level == logging.NOTSET:
            logger.setLevel(logging.WARNING)
    else:
        warnings.filterwarnings("default")
        logger.setLevel(logging.NOTSET)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    # Re-enable warnings
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger(LOGGER_NAME).setLevel(logging.DEBUG)


def configure_ops_log(store_dir) -> RotatingFileHandler:
    """Configure a persistent operations log for a storage directory.

    Writes to {store_dir}/ck-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed when the command finishes.
    """
    log_path = Path(store_dir) / OPS_LOG_FILENAME
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    ck_logger = logging.getLogger(LOGGER_NAME)
    ck_logger.addHandler(handler)
    # Ensure INFO gets through even in quiet mode
    if ck_logger.level == logging.NOTSET or ck_logger.level > logging.INFO:
        ck_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler: RotatingFileHandler) -> None:
    """Detach and close a handler returned by configure_ops_log."""
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()


def verbose_from_env() -> bool:
    """CK_VERBOSE=1 turns on debug logging without --verbose."""
    return os.environ.get("CK_VERBOSE") == "1"
