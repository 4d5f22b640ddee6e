"""
Transient-error retry for database operations.

Store calls are blocking SQLAlchemy operations; with_database_retry runs each
attempt in a worker thread so the asyncio loop keeps consuming scraper output
while a write is in flight.

Only connection-level failures are retried. They are recognized from an error
code found anywhere along the cause chain (SQLAlchemy's .orig, __cause__,
__context__) or, failing that, from well-known message fragments.
"""

import asyncio
import errno
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("database")

T = TypeVar("T")

TRANSIENT_DB_ERROR_CODES = frozenset(
    {
        "ECONNRESET",
        "ETIMEDOUT",
        "ECONNREFUSED",
        "EPIPE",
        "57P01",  # PostgreSQL admin_shutdown
    }
)

TRANSIENT_MESSAGE_FRAGMENTS = (
    "connection reset",
    "server closed the connection",
    "terminating connection",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff settings (milliseconds)."""

    max_attempts: int = 5
    base_delay_ms: int = 500
    max_delay_ms: int = 5000

    def __post_init__(self):
        # Env-derived values are clamped, never rejected
        object.__setattr__(self, "max_attempts", max(1, self.max_attempts))
        object.__setattr__(self, "base_delay_ms", max(50, self.base_delay_ms))
        object.__setattr__(
            self, "max_delay_ms", max(self.base_delay_ms, self.max_delay_ms)
        )

    def delay_ms(self, attempt: int) -> int:
        """Delay to wait after the given failed attempt (1-based)."""
        return min(self.base_delay_ms * 2 ** (attempt - 1), self.max_delay_ms)


def unwrap_error(error: BaseException) -> Optional[BaseException]:
    """
    Return the error one level below ``error``, or None.

    SQLAlchemy wraps DBAPI exceptions in ``.orig``; everything else chains via
    ``__cause__`` (explicit) or ``__context__`` (implicit).
    """
    for candidate in (
        getattr(error, "orig", None),
        error.__cause__,
        error.__context__,
    ):
        if isinstance(candidate, BaseException) and candidate is not error:
            return candidate
    return None


def _iter_error_chain(error: BaseException):
    seen: set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = unwrap_error(current)


def _own_error_code(error: BaseException) -> Optional[str]:
    if isinstance(error, SQLAlchemyError):
        # .code there is a docs link id, the driver error sits in .orig
        return None

    for attribute in ("code", "sqlstate", "pgcode"):
        value = getattr(error, attribute, None)
        if isinstance(value, str) and value.strip():
            return value.strip().upper()

    if isinstance(error, OSError) and isinstance(error.errno, int):
        return errno.errorcode.get(error.errno)

    return None


def extract_error_code(error: BaseException) -> Optional[str]:
    """First error code found walking down the cause chain."""
    for link in _iter_error_chain(error):
        code = _own_error_code(link)
        if code:
            return code
    return None


def is_transient_database_error(error: BaseException) -> bool:
    """Whether retrying the failed operation has a reasonable chance to succeed."""
    for link in _iter_error_chain(error):
        code = _own_error_code(link)
        if code and code in TRANSIENT_DB_ERROR_CODES:
            return True
        message = str(link).lower()
        if any(fragment in message for fragment in TRANSIENT_MESSAGE_FRAGMENTS):
            return True
    return False


def describe_database_error(error: BaseException) -> str:
    code = extract_error_code(error)
    message = str(error)
    if code and message:
        return f"{code} - {message}"
    return code or message or type(error).__name__


async def with_database_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run a blocking database operation, retrying transient failures.

    Args:
        operation: Zero-argument callable doing one complete unit of work
        policy: Attempt count and backoff bounds
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        Whatever the operation returned

    Raises:
        The operation's exception when it is not transient or when the last
        attempt fails.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await asyncio.to_thread(operation)
        except Exception as error:
            if attempt == policy.max_attempts or not is_transient_database_error(error):
                raise

            delay_ms = policy.delay_ms(attempt)
            logger.warning(
                f"Transient database error ({describe_database_error(error)}) -> "
                f"retrying in {delay_ms}ms (attempt {attempt + 1}/{policy.max_attempts})."
            )
            await sleep(delay_ms / 1000)

    raise RuntimeError("Database operation failed after retries")
