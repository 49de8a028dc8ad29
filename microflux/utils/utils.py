import logging
import sys
import time
from contextlib import contextmanager
from functools import wraps

logger = logging.getLogger("microflux")

_indent_level = 0


def setup_logging(level: int = logging.INFO) -> None:
    """Route microflux logs to stdout (used by the CLI)."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logger.setLevel(level)


def _indented(msg: str) -> str:
    return "  " * _indent_level + msg


def log_info(msg: str) -> None:
    logger.info(_indented(msg))


def log_warning(msg: str) -> None:
    logger.warning(_indented(msg))


@contextmanager
def log_indent():
    """Indent every log line emitted inside the block by one level."""
    global _indent_level
    _indent_level += 1
    try:
        yield
    finally:
        _indent_level -= 1


def log_time(step_name: str):
    """Decorator logging start and wall-clock duration of a pipeline step."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            log_info(f"{step_name}...")
            start = time.perf_counter()
            with log_indent():
                result = func(*args, **kwargs)
            log_info(f"{step_name} done in {time.perf_counter() - start:.2f}s")
            return result
        return wrapper
    return decorator
