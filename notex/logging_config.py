"""
Logging configuration for notex.

Suppress verbose HTTP library output by default for better UX.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "urllib3")


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    notex's own INFO messages still reach stderr so the user can follow
    the passes; per-request chatter from HTTP clients is hidden.

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    if not quiet:
        return

    warnings.filterwarnings("ignore")

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    notex_logger = logging.getLogger("notex")
    notex_logger.setLevel(logging.INFO)
    if not any(getattr(h, "_notex_console", False) for h in notex_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        handler._notex_console = True
        notex_logger.addHandler(handler)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Drop the compact console handler; the root handler takes over
    notex_logger = logging.getLogger("notex")
    for h in list(notex_logger.handlers):
        if getattr(h, "_notex_console", False):
            notex_logger.removeHandler(h)

    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    notex_logger.setLevel(logging.DEBUG)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)


def configure_run_log(log_path):
    """Configure a persistent log file for a run.

    Uses a rotating file handler (1MB max, 3 backups).
    Returns the handler so it can be removed when the run ends.
    """
    log_path = Path(log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    notex_logger = logging.getLogger("notex")
    notex_logger.addHandler(handler)
    if notex_logger.level == logging.NOTSET or notex_logger.level > logging.INFO:
        notex_logger.setLevel(logging.INFO)

    return handler
