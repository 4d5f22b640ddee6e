"""
Centralized Logging Utilities and Decorators

Provides reusable logging setup and function decorators for consistent logging
across the channel ingestion project.

Usage:
    from src.logger import setup_logging, log_function

    # Setup logging for a module
    logger = setup_logging(
        logger_name="scrape_youtube",
        log_file="logs/scrape_youtube.log",
        verbose=True
    )

    # Decorate functions (sync or async) for automatic logging
    @log_function(logger_name="scrape_youtube", log_args=True)
    async def load_state(url):
        ...
"""

import functools
import inspect
import logging
import time
from pathlib import Path
from typing import Optional, Callable, Any


def setup_logging(
    logger_name: str,
    log_file: Optional[str] = "logs/app.log",
    verbose: bool = False,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """
    Set up logging with an optional file handler and a console handler.

    Args:
        logger_name: Name for the logger (e.g., "scrape_youtube")
        log_file: Path to log file, or None to skip file logging
        verbose: If True, console handler emits DEBUG records (default: False)
        level: Base logging level (default: logging.INFO)
        console: If True, attach a console handler for operator output

    Returns:
        Configured logger instance

    Example:
        logger = setup_logging("scrape_youtube", "logs/scrape_youtube.log", verbose=True)
        logger.info("Run started")
    """
    logger = logging.getLogger(logger_name)

    # Avoid adding multiple handlers if already configured
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG if verbose else level)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG if verbose else level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG if verbose else level)
        console_handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
        logger.addHandler(console_handler)

    return logger


def _resolve_logger(logger_name: str, log_file: Optional[str], level: int):
    if log_file:
        return setup_logging(logger_name=logger_name, log_file=log_file, level=level)
    # Unconfigured loggers propagate to the root logger
    return logging.getLogger(logger_name)


def log_function(
    logger_name: Optional[str] = None,
    log_file: Optional[str] = None,
    level: int = logging.DEBUG,
    log_args: bool = False,
    log_result: bool = False,
    log_execution_time: bool = True,
) -> Callable:
    """
    Decorator to automatically log function entry, exit, execution time, and exceptions.

    Works for both plain functions and coroutine functions; for the latter the
    timing covers the awaited body, not just coroutine creation.

    Args:
        logger_name: Custom logger name (if None, uses the decorated function's module name)
        log_file: Optional custom log file path (if None, uses existing logger config)
        level: Log level for entry/exit messages (default: logging.DEBUG)
        log_args: If True, log function arguments (default: False)
        log_result: If True, log return value (default: False)
        log_execution_time: If True, log execution duration (default: True)

    Returns:
        Decorated function with logging

    Example:
        @log_function(logger_name="database", log_args=True)
        def upsert_channel(engine, payload):
            ...
    """

    def decorator(func: Callable) -> Callable:
        name = logger_name or func.__module__
        func_name = func.__name__

        def entry_message(args, kwargs) -> str:
            log_msg = f"Calling {func_name}"
            if log_args and (args or kwargs):
                args_repr = [repr(a) for a in args]
                kwargs_repr = [f"{k}={v!r}" for k, v in kwargs.items()]
                log_msg += f" with args: {', '.join(args_repr + kwargs_repr)}"
            return log_msg

        def completion_message(result, execution_time: float) -> str:
            completion_msg = f"Completed {func_name}"
            if log_execution_time:
                completion_msg += f" in {execution_time:.2f}s"
            if log_result:
                completion_msg += f" with result: {result!r}"
            return completion_msg

        def log_failure(logger, exc: Exception, execution_time: float) -> None:
            logger.error(
                f"Exception in {func_name} after {execution_time:.2f}s: {type(exc).__name__}: {exc}",
                exc_info=True,
            )

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs) -> Any:
                logger = _resolve_logger(name, log_file, level)
                logger.log(level, entry_message(args, kwargs))
                start_time = time.monotonic()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    log_failure(logger, e, time.monotonic() - start_time)
                    raise
                logger.log(level, completion_message(result, time.monotonic() - start_time))
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            logger = _resolve_logger(name, log_file, level)
            logger.log(level, entry_message(args, kwargs))
            start_time = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log_failure(logger, e, time.monotonic() - start_time)
                raise
            logger.log(level, completion_message(result, time.monotonic() - start_time))
            return result

        return wrapper

    return decorator


def log_with_timer(logger_name: Optional[str] = None) -> Callable:
    """
    Simple decorator that logs function entry/exit with execution time.

    Example:
        @log_with_timer("scrape_youtube")
        def build_scrape_command(executable, url, config, options):
            ...
    """
    return log_function(
        logger_name=logger_name,
        log_args=False,
        log_result=False,
        log_execution_time=True,
    )
