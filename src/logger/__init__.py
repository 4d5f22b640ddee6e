"""Logging utilities for the channel ingestion project."""

from .logging_decorator import setup_logging, log_function, log_with_timer

__all__ = ["setup_logging", "log_function", "log_with_timer"]
