"""
Error taxonomy for notex and error logging utilities.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class OracleError(Exception):
    """Base class for failures talking to the LLM endpoint."""

    retryable = False


class TransientOracleError(OracleError):
    """Network error, timeout or rate limit. Retryable.

    Args:
        retry_after: Server-suggested delay in seconds, if any
    """

    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class MalformedResponseError(OracleError):
    """Oracle answered, but not in the expected shape. Retryable.

    LLM output varies between calls, so a retry may parse.
    """

    retryable = True


class FatalOracleError(OracleError):
    """Authentication failure, invalid endpoint or bad request. Not retryable."""


class RequestTooLargeError(OracleError):
    """Request content exceeds what one call may carry. Not retryable."""


class ConflictingWriteError(Exception):
    """A move or merge would overwrite an existing file that is not one of its sources."""


class TaskCancelledError(Exception):
    """Task was still queued when the run was cancelled."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting NOTEX_STATE_PATH."""
    state = os.environ.get("NOTEX_STATE_PATH")
    if state:
        return Path(state) / "notex-errors.log"
    return Path.home() / ".notex" / "notex-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path
