import asyncio

import pytest

from reel_relay.services.clients import ClientConnectionError, ClientResponseError
from reel_relay.services.retry import RetryPolicy, is_non_retryable, with_retry

POLICY = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0, backoff_multiplier=2.0)


class Recorder:
    def __init__(self):
        self.sleeps = []
        self.notices = []

    async def sleep(self, delay):
        self.sleeps.append(delay)

    async def on_retry(self, attempt, delay, error):
        self.notices.append((attempt, delay))


def failing(error):
    calls = []

    async def operation():
        calls.append(1)
        raise error

    return operation, calls


def test_retryable_error_uses_all_attempts_with_backoff():
    recorder = Recorder()
    operation, calls = failing(ClientResponseError("Server error", status_code=500))

    with pytest.raises(ClientResponseError) as excinfo:
        asyncio.run(with_retry(operation, POLICY, on_retry=recorder.on_retry, sleep=recorder.sleep))

    assert len(calls) == 3
    assert recorder.sleeps == [1.0, 2.0]
    assert recorder.notices == [(1, 1.0), (2, 2.0)]
    assert any("3/3" in note for note in excinfo.value.__notes__)


def test_non_retryable_error_stops_after_one_attempt():
    recorder = Recorder()
    operation, calls = failing(ClientResponseError("Forbidden", status_code=403))

    with pytest.raises(ClientResponseError):
        asyncio.run(with_retry(operation, POLICY, sleep=recorder.sleep))

    assert len(calls) == 1
    assert recorder.sleeps == []


def test_delay_is_capped():
    policy = RetryPolicy(max_attempts=5, base_delay=15.0, max_delay=40.0)
    assert [policy.delay_for(n) for n in range(1, 5)] == [15.0, 30.0, 40.0, 40.0]


def test_success_after_failure_returns_value():
    recorder = Recorder()
    attempts = []

    async def operation():
        attempts.append(1)
        if len(attempts) < 2:
            raise ClientResponseError("Rate limited", status_code=429)
        return "ok"

    assert asyncio.run(with_retry(operation, POLICY, sleep=recorder.sleep)) == "ok"
    assert recorder.sleeps == [1.0]


@pytest.mark.parametrize(
    "error, expected",
    [
        (ClientResponseError("Unauthorized", status_code=401), True),
        (ClientResponseError("Bad", status_code=400, platform_message="Invalid media format"), True),
        (ClientResponseError("Bad", status_code=400, platform_message="Unsupported format"), True),
        (ClientResponseError("Error validating access token: Invalid access token"), True),
        (ClientResponseError("Application request limit reached: API limit exceeded"), True),
        (ClientResponseError("Too many requests", status_code=429), False),
        (ClientResponseError("Server error", status_code=503), False),
        (ClientConnectionError("cannot connect", unreachable=True), True),
        (ClientConnectionError("connection reset", unreachable=False), False),
        (RuntimeError("socket closed"), False),
    ],
)
def test_classification(error, expected):
    assert is_non_retryable(error) is expected
