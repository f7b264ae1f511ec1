import threading
import time

import pytest

from preview_service.limiter import ConcurrencyLimiter
from preview_service.retry import RetryPolicy


def test_limiter_bounds_concurrency() -> None:
    limiter = ConcurrencyLimiter(2, name="test")

    def work(item: int) -> int:
        time.sleep(0.02)
        return item * 2

    settled = limiter.run_all(work, range(8))
    assert [s.value for s in settled] == [i * 2 for i in range(8)]
    assert 1 <= limiter.peak_count <= 2
    assert limiter.active_count == 0


def test_limiter_admits_in_submission_order() -> None:
    started = []
    lock = threading.Lock()

    def work(item: int) -> None:
        with lock:
            started.append(item)

    ConcurrencyLimiter(1).run_all(work, [3, 1, 2, 0])
    assert started == [3, 1, 2, 0]


def test_limiter_isolates_failures() -> None:
    def work(item: int) -> int:
        if item == 1:
            raise ValueError("bad item")
        return item

    settled = ConcurrencyLimiter(2).run_all(work, [0, 1, 2])
    assert [s.ok for s in settled] == [True, False, True]
    assert isinstance(settled[1].error, ValueError)
    assert settled[1].item == 1


def test_limiter_rejects_zero_limit() -> None:
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)


def test_retry_policy_counts_attempts() -> None:
    calls = []
    sleeps = []

    def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("transient")
        return "ok"

    policy = RetryPolicy(max_attempts=3, delay=0.5, backoff=2.0)
    assert policy.call(flaky, sleep=sleeps.append) == "ok"
    assert sleeps == [0.5, 1.0]


def test_retry_policy_reraises_last_error() -> None:
    calls = []

    def always() -> None:
        calls.append(1)
        raise RuntimeError("always")

    with pytest.raises(RuntimeError):
        RetryPolicy(max_attempts=2, delay=0).call(always, sleep=lambda s: None)
    assert len(calls) == 2


def test_retry_policy_ignores_unlisted_errors() -> None:
    calls = []

    def fail() -> None:
        calls.append(1)
        raise KeyError("x")

    with pytest.raises(KeyError):
        RetryPolicy(max_attempts=3).call(fail, retry_on=(ValueError,))
    assert len(calls) == 1
