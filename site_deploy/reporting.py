"""Result lines written by every deploy step."""

import logging
from typing import Optional

# Package logger; used whenever no logger is injected.
logger = logging.getLogger("site_deploy")

SUCCESS_MARK: str = "✅"
FAILURE_MARK: str = "❌"


def format_result(operation: str, verb: str, noun: str, error: Optional[BaseException] = None) -> str:
    """
    Builds a line like `upload_object Result: ✅ Finished file`.

    Failures get the ❌ marker, the word `Failed` and the error text appended.
    """
    if error is not None:
        return f"{operation} Result: {FAILURE_MARK} Failed {verb} {noun}: {error}"
    return f"{operation} Result: {SUCCESS_MARK} {verb} {noun}"


def log_result(
    operation: str,
    verb: str,
    noun: str,
    error: Optional[BaseException] = None,
    log: Optional[logging.Logger] = None,
) -> None:
    """Writes a result line at INFO, or at ERROR when `error` is given."""
    target: logging.Logger = log or logger
    if error is not None:
        target.error(format_result(operation, verb, noun, error))
    else:
        target.info(format_result(operation, verb, noun))


def ensure_console_logging(level: int = logging.INFO) -> None:
    """
    Sends log records to the console when nobody configured logging yet.

    Does nothing if the root logger or the package logger already has a
    handler, so an embedding application keeps its own setup.
    """
    if logging.getLogger().handlers or logger.handlers:
        return
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(message)s")
