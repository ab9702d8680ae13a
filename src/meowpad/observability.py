"""Logging setup and operation tracing for meowpad.

Every traced operation writes a START and an END line sharing a short
correlation id, so one capture or store call can be followed through the
rotating log file.
"""
import functools
import inspect
import logging
import time
import uuid
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Argument names worth echoing into trace lines
CONTEXT_KEYS = ("url", "title", "link_id", "note_id", "tag_name", "primary_id", "related_id")

F = TypeVar('F', bound=Callable[..., Any])


def configure_logging(
    log_dir: Union[str, Path],
    level: int = logging.WARNING,
    max_bytes: int = 2 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Attach a rotating file handler (and optionally stderr) to the meowpad logger.

    Args:
        log_dir: Directory for ``meowpad.log``; created if missing.
        level: Level for the package logger and its handlers.
        max_bytes: Size at which the log file rotates.
        backup_count: Rotated files to keep.
        console: Also log to stderr.

    Returns:
        The log directory.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("meowpad")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "meowpad.log"
    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in package_logger.handlers
    )
    if console and not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    package_logger.debug(f"Logging to {log_file} (rotating at {max_bytes} bytes)")
    return log_path


def _format_pairs(values: Dict[str, Any]) -> str:
    return ', '.join(f'{k}={v}' for k, v in values.items())


@contextmanager
def timed_operation(operation: str, **context):
    """Log the start, end and duration of an operation.

    Yields a dict; entries the caller adds are appended to the END line.

    Example:
        with timed_operation('capture', url=url) as op:
            outcome = do_capture()
            op['status'] = outcome.status.value
    """
    correlation_id = uuid.uuid4().hex[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {}
    logger.debug(f"[{correlation_id}] START {operation} ({_format_pairs(context)})")

    status = 'OK'
    try:
        yield result_info
    except BaseException as e:
        status = f'ERROR: {str(e) or e.__class__.__name__}'
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) "
            f"[{status}] {_format_pairs(result_info)}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Wrap a function in ``timed_operation``.

    Identifying arguments (``url``, ``link_id`` and the like) are picked out
    whether they were passed by position or by keyword.
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                arguments = signature.bind_partial(*args, **kwargs).arguments
            except TypeError:
                # Let the call itself raise the real signature error
                arguments = kwargs
            context = {
                key: str(arguments[key])[:50]
                for key in CONTEXT_KEYS
                if arguments.get(key) is not None
            }

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple)):
                    op['result_count'] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
