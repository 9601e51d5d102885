"""Tests for transient-error retry handling."""

import asyncio

import pytest

from bedrock_service import BedrockError
from retry import (
    RetryOptions, backoff_delay, describe_retry, is_rate_limit_error, is_retryable_error,
    parse_retry_delay, with_retry,
)


class Recorder:
    def __init__(self):
        self.sleeps = []

    async def sleep(self, seconds):
        self.sleeps.append(seconds)


def test_classification():
    assert is_rate_limit_error(BedrockError("ThrottlingException: Too many tokens"))
    assert is_retryable_error(BedrockError("HTTP 503 ServiceUnavailable"))
    assert is_retryable_error(RuntimeError("Connection reset by peer"))
    assert not is_retryable_error(BedrockError("ValidationException: bad request"))


def test_parse_retry_delay():
    assert parse_retry_delay(RuntimeError("Please retry in 2.5s")) == 3500
    assert parse_retry_delay(RuntimeError('{"retryDelay": "7s"}')) == 8000
    assert parse_retry_delay(RuntimeError("nothing here")) is None


def test_backoff_is_capped():
    options = RetryOptions(base_delay_ms=1000, max_delay_ms=5000)
    assert [backoff_delay(n, options) for n in range(1, 5)] == [1000, 2000, 4000, 5000]


def test_non_retryable_error_raises_immediately():
    recorder = Recorder()
    calls = []

    async def fn():
        calls.append(1)
        raise BedrockError("ValidationException: malformed input")

    with pytest.raises(BedrockError):
        asyncio.run(with_retry(fn, RetryOptions(sleep=recorder.sleep)))
    assert calls == [1]
    assert recorder.sleeps == []


def test_transient_errors_retry_then_succeed():
    recorder = Recorder()
    retries = []
    attempts = iter([BedrockError("503 ServiceUnavailable"), BedrockError("ThrottlingException, retry in 1s"), "ok"])

    async def fn():
        value = next(attempts)
        if isinstance(value, Exception):
            raise value
        return value

    options = RetryOptions(base_delay_ms=100, max_delay_ms=1000, sleep=recorder.sleep,
                           on_retry=lambda attempt, delay, err: retries.append((attempt, delay)))
    assert asyncio.run(with_retry(fn, options)) == "ok"
    assert retries == [(1, 100), (2, 2000)]
    assert recorder.sleeps == [0.1, 2.0]


def test_gives_up_after_max_retries():
    recorder = Recorder()
    calls = []

    async def fn():
        calls.append(1)
        raise BedrockError("InternalServerException")

    with pytest.raises(BedrockError):
        asyncio.run(with_retry(fn, RetryOptions(max_retries=2, base_delay_ms=10, sleep=recorder.sleep)))
    assert len(calls) == 3
    assert len(recorder.sleeps) == 2


def test_describe_retry():
    assert describe_retry(1, 5000, BedrockError("429 Too Many Requests"), 3) == \
        "Rate limited. Waiting 5s... (attempt 1/3)"
    assert describe_retry(2, 10000, BedrockError("503"), 3) == "Model error, retrying in 10s... (attempt 2/3)"
