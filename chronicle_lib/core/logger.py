"""Logging configuration for Chronicle.

Every module logs below the ``chronicle`` logger. The CLI calls
``setup_logging`` once; library users may attach their own handlers instead.
"""

# Standard library imports
import functools
import logging
import sys
import time
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "chronicle"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Client libraries that log every HTTP request at INFO
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "langchain",
    "langchain_core",
    "google_genai",
    "openai",
    "anthropic",
)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """Configure the ``chronicle`` logger.

    Records go to stdout and, if ``log_file`` is given, to that file as
    UTF-8. Calling this again replaces the handlers of the previous call.

    Args:
        level: Level name; unknown names fall back to INFO
        log_file: Optional path to a log file
        format_string: Optional custom format string

    Returns:
        The configured ``chronicle`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    formatter = logging.Formatter(format_string or DEFAULT_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Cannot write log file {log_file}: {e}")
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger below ``chronicle``.

    Module paths inside the package are shortened, so
    ``chronicle_lib.codex`` logs as ``chronicle.codex``.
    """
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name.startswith("chronicle_lib."):
        name = name[len("chronicle_lib."):]
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


config_logger = get_logger("config")
llm_logger = get_logger("llm")
store_logger = get_logger("store")


def log_function_call(logger: logging.Logger):
    """Decorator that logs the duration of a model-backed pass.

    Failures are logged and re-raised unchanged.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{func.__name__} failed after {time.perf_counter() - started:.1f}s: {e}")
                raise
            logger.debug(f"{func.__name__} finished in {time.perf_counter() - started:.1f}s")
            return result

        return wrapper
    return decorator
