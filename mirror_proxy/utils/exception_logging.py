"""
Utility functions for logging proxy errors together with their causes.

Errors raised by the proxy wrap the httpx or codec error that triggered them
(``raise ... from exc``); these helpers walk that ``__cause__`` chain so the
log line and the client diagnostic name the root problem.
"""

import logging

MAX_CAUSE_DEPTH = 10


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            try:
                return f"<{type(obj).__name__} object (string conversion failed)>"
            except Exception:
                return "<object (all string conversions failed)>"


def _describe(exception: BaseException) -> str:
    text = _safe_str(exception)
    name = type(exception).__name__
    return f"{name}: {text}" if text else name


def iter_causes(exception: BaseException):
    """
    Yield the explicit causes of ``exception``, innermost last.

    Stops after MAX_CAUSE_DEPTH links or on a cycle.
    """
    seen = {id(exception)}
    current = getattr(exception, "__cause__", None)
    depth = 0
    while current is not None and id(current) not in seen and depth < MAX_CAUSE_DEPTH:
        seen.add(id(current))
        yield current
        current = getattr(current, "__cause__", None)
        depth += 1


def format_exception_message(exception: BaseException) -> str:
    """
    Format an exception message, including its chain of causes.
    This function is designed to never throw exceptions itself.

    Args:
        exception: The exception to format

    Returns:
        A formatted string describing the exception
    """
    try:
        if exception is None:
            return "None"

        message = _safe_str(exception)
        causes = [_describe(cause) for cause in iter_causes(exception)]
        if causes:
            return f"{message} (caused by {'; '.join(causes)})"
        return message
    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception and its causes. Never raises, even for broken
    exception objects or logger failures.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Redirect]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        if exception is None:
            logger.log(level, f"{safe_prefix} Exception: None")
            return

        logger.log(
            level,
            f"{safe_prefix} {type(exception).__name__}: {_safe_str(exception)}",
            exc_info=exception,
        )
        for i, cause in enumerate(iter_causes(exception)):
            logger.log(level, f"{safe_prefix} Cause {i + 1}: {_describe(cause)}")
    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            # Nothing left to log with
            pass
