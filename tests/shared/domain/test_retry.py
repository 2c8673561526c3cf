"""Tests for bounded retry with exponential backoff."""

import pytest
from shared.retry import backoff_delay, call_with_retry


class Transient(Exception):
    pass


class Fatal(Transient):
    pass


def _flaky(failures, error=Transient):
    calls = []

    def fn():
        calls.append(1)
        if len(calls) <= failures:
            raise error("boom")
        return "ok"

    return fn, calls


class TestBackoffDelay:
    def test_doubles_per_retry(self):
        assert [backoff_delay(0.5, n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]


class TestCallWithRetry:
    def test_succeeds_after_transient_failures(self):
        fn, calls = _flaky(2)
        sleeps = []

        assert call_with_retry(fn, retry_on=(Transient,), max_attempts=3, base_delay=0.5, sleep=sleeps.append) == "ok"
        assert len(calls) == 3
        assert sleeps == [0.5, 1.0]

    def test_budget_exhausted_reraises(self):
        fn, calls = _flaky(5)
        with pytest.raises(Transient):
            call_with_retry(fn, retry_on=(Transient,), max_attempts=3, sleep=lambda _: None)
        assert len(calls) == 3

    def test_give_up_wins_over_retry(self):
        fn, calls = _flaky(5, error=Fatal)
        with pytest.raises(Fatal):
            call_with_retry(fn, retry_on=(Transient,), give_up_on=(Fatal,), sleep=lambda _: None)
        assert len(calls) == 1

    def test_other_errors_are_not_retried(self):
        fn, calls = _flaky(1, error=KeyError)
        with pytest.raises(KeyError):
            call_with_retry(fn, retry_on=(Transient,), sleep=lambda _: None)
        assert len(calls) == 1
