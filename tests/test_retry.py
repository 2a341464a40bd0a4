"""Tests for the transient-error retry policy."""

import socket

import httpx
import pytest

from taleweaver.errors import ConfigurationError, ProviderHTTPError, TransientNetworkError
from taleweaver.orchestrator.retry import is_transient_network_error, with_retry


class Flaky:
    """Operation that raises the queued errors before returning ``result``."""

    def __init__(self, *errors: Exception, result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "exc",
    [
        TransientNetworkError("llm_timeout"),
        httpx.ConnectTimeout("connect timed out"),
        httpx.ConnectError("refused"),
        ConnectionResetError(),
        TimeoutError(),
        socket.gaierror(-3, "Temporary failure in name resolution"),
        RuntimeError("read ECONNRESET"),
        RuntimeError("getaddrinfo EAI_AGAIN api.example.com"),
    ],
)
def test_transient_errors(exc):
    assert is_transient_network_error(exc)


@pytest.mark.parametrize(
    "exc",
    [
        ProviderHTTPError("image", 400, "bad prompt"),
        ProviderHTTPError("llm", 500, "internal"),
        ConfigurationError("ark_config_missing:api_key"),
        ValueError("nope"),
    ],
)
def test_non_transient_errors(exc):
    assert not is_transient_network_error(exc)


# ---------------------------------------------------------------------------
# with_retry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_retries_transient_then_succeeds():
    op = Flaky(TransientNetworkError("a"), TransientNetworkError("b"))
    sleep = SleepRecorder()
    seen = []

    result = await with_retry(
        op,
        retries=3,
        base_delay=1.0,
        max_delay=10.0,
        jitter=0,
        on_attempt=lambda n, e: seen.append((n, str(e))),
        sleep=sleep,
    )

    assert result == "ok"
    assert op.calls == 3
    assert seen == [(1, "a"), (2, "b")]
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_backoff_is_capped_and_jittered():
    op = Flaky(*[TransientNetworkError("x") for _ in range(4)])
    sleep = SleepRecorder()

    await with_retry(op, retries=5, base_delay=1.0, max_delay=3.0, jitter=0.5, sleep=sleep)

    assert len(sleep.delays) == 4
    for delay, cap in zip(sleep.delays, [1.0, 2.0, 3.0, 3.0]):
        assert cap <= delay <= cap + 0.5


@pytest.mark.asyncio
async def test_non_transient_error_is_not_retried():
    op = Flaky(ProviderHTTPError("image", 400, "bad"))
    sleep = SleepRecorder()
    seen = []

    with pytest.raises(ProviderHTTPError, match="image_http_400:bad"):
        await with_retry(op, retries=3, on_attempt=lambda n, e: seen.append(n), sleep=sleep)

    assert op.calls == 1
    assert seen == [1]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_exhausted_attempts_raise_last_error():
    op = Flaky(TransientNetworkError("one"), TransientNetworkError("two"), TransientNetworkError("three"))

    with pytest.raises(TransientNetworkError, match="three"):
        await with_retry(op, retries=3, jitter=0, sleep=SleepRecorder())

    assert op.calls == 3


@pytest.mark.asyncio
async def test_observer_errors_do_not_change_outcome():
    op = Flaky(TransientNetworkError("a"))

    def broken_observer(n, e):
        raise RuntimeError("observer bug")

    result = await with_retry(op, retries=2, jitter=0, on_attempt=broken_observer, sleep=SleepRecorder())
    assert result == "ok"
