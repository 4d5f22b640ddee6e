import asyncio
import errno

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from src.db.retry import (
    RetryPolicy,
    describe_database_error,
    extract_error_code,
    is_transient_database_error,
    with_database_retry,
)


class DriverError(Exception):
    def __init__(self, message, code=None, sqlstate=None):
        super().__init__(message)
        if code is not None:
            self.code = code
        if sqlstate is not None:
            self.sqlstate = sqlstate


def recording_sleep():
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    return delays, sleep


class TestRetryPolicy:
    def test_backoff_doubles_up_to_cap(self):
        policy = RetryPolicy(max_attempts=5, base_delay_ms=500, max_delay_ms=5000)
        assert [policy.delay_ms(n) for n in range(1, 6)] == [500, 1000, 2000, 4000, 5000]

    def test_clamps_bad_values(self):
        policy = RetryPolicy(max_attempts=0, base_delay_ms=1, max_delay_ms=10)
        assert policy.max_attempts == 1
        assert policy.base_delay_ms == 50
        assert policy.max_delay_ms == 50


class TestClassification:
    @pytest.mark.parametrize("code", ["ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "EPIPE"])
    def test_transient_codes(self, code):
        assert is_transient_database_error(DriverError("boom", code=code))

    def test_postgres_admin_shutdown_sqlstate(self):
        assert is_transient_database_error(DriverError("shutting down", sqlstate="57P01"))

    def test_oserror_errno(self):
        assert is_transient_database_error(ConnectionResetError(errno.ECONNRESET, "reset by peer"))

    @pytest.mark.parametrize(
        "message",
        [
            "Connection reset by peer",
            "server closed the connection unexpectedly",
            "FATAL: terminating connection due to administrator command",
        ],
    )
    def test_transient_messages(self, message):
        assert is_transient_database_error(RuntimeError(message))

    def test_sqlalchemy_wrapped_driver_error(self):
        wrapped = OperationalError("INSERT ...", {}, DriverError("boom", code="ECONNRESET"))
        assert is_transient_database_error(wrapped)
        assert extract_error_code(wrapped) == "ECONNRESET"

    def test_explicit_cause_chain(self):
        try:
            try:
                raise DriverError("boom", sqlstate="57P01")
            except DriverError as inner:
                raise RuntimeError("write failed") from inner
        except RuntimeError as outer:
            assert is_transient_database_error(outer)

    def test_constraint_violation_is_not_transient(self):
        error = IntegrityError("INSERT ...", {}, DriverError("duplicate key", sqlstate="23505"))
        assert not is_transient_database_error(error)

    def test_cyclic_chain_terminates(self):
        first = RuntimeError("first")
        second = RuntimeError("second")
        first.__cause__ = second
        second.__cause__ = first
        assert not is_transient_database_error(first)
        assert extract_error_code(first) is None

    def test_describe_includes_code(self):
        assert describe_database_error(DriverError("boom", code="EPIPE")) == "EPIPE - boom"


class TestWithDatabaseRetry:
    def test_retries_transient_errors_then_succeeds(self):
        attempts = []

        def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise DriverError("boom", code="ECONNRESET")
            return "ok"

        delays, sleep = recording_sleep()
        policy = RetryPolicy(max_attempts=5, base_delay_ms=100, max_delay_ms=1000)

        assert asyncio.run(with_database_retry(operation, policy, sleep=sleep)) == "ok"
        assert len(attempts) == 3
        assert delays == [0.1, 0.2]

    def test_non_transient_error_is_raised_immediately(self):
        attempts = []

        def operation():
            attempts.append(1)
            raise ValueError("bad payload")

        delays, sleep = recording_sleep()
        with pytest.raises(ValueError):
            asyncio.run(with_database_retry(operation, RetryPolicy(), sleep=sleep))
        assert len(attempts) == 1
        assert delays == []

    def test_gives_up_after_max_attempts(self):
        attempts = []

        def operation():
            attempts.append(1)
            raise DriverError("boom", code="ETIMEDOUT")

        delays, sleep = recording_sleep()
        policy = RetryPolicy(max_attempts=3, base_delay_ms=100, max_delay_ms=150)
        with pytest.raises(DriverError):
            asyncio.run(with_database_retry(operation, policy, sleep=sleep))
        assert len(attempts) == 3
        assert delays == [0.1, 0.15]
