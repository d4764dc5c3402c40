"""Unit tests for ledger_core.retry."""

from __future__ import annotations

import pytest

from ledger_core.retry import (
    PollConfig,
    RetryConfig,
    _compute_delay,
    async_retry_with_backoff,
    poll_until,
)


class _Sleeps:
    """Records requested sleeps instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


class TestComputeDelay:
    def test_exponential_growth_no_jitter(self) -> None:
        config = RetryConfig(base_delay=0.5, max_delay=8.0, jitter=False)
        assert [_compute_delay(a, config) for a in range(5)] == [0.5, 1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self) -> None:
        config = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=False)
        assert _compute_delay(10, config) == 3.0


class TestAsyncRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self) -> None:
        sleeps = _Sleeps()
        calls = {"n": 0}

        async def flaky() -> str:
            calls["n"] += 1
            if calls["n"] < 3:
                raise ConnectionError("boom")
            return "ok"

        config = RetryConfig(max_retries=3, jitter=False)
        assert await async_retry_with_backoff(flaky, config, (ConnectionError,), sleep=sleeps) == "ok"
        assert calls["n"] == 3
        assert len(sleeps.calls) == 2

    @pytest.mark.asyncio
    async def test_reraises_after_budget(self) -> None:
        async def always_fails() -> None:
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await async_retry_with_backoff(
                always_fails, RetryConfig(max_retries=2, jitter=False), (ConnectionError,), sleep=_Sleeps()
            )

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self) -> None:
        sleeps = _Sleeps()

        async def bad() -> None:
            raise KeyError("nope")

        with pytest.raises(KeyError):
            await async_retry_with_backoff(bad, RetryConfig(max_retries=5), (ConnectionError,), sleep=sleeps)
        assert sleeps.calls == []


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


class TestPollUntil:
    @pytest.mark.asyncio
    async def test_returns_first_value(self) -> None:
        sleeps = _Sleeps()
        answers = iter([None, None, {"id": "pay_1"}])

        async def fetch() -> dict | None:
            return next(answers)

        result = await poll_until(fetch, PollConfig(interval=1.0, max_attempts=5), sleep=sleeps)
        assert result.ok
        assert result.value == {"id": "pay_1"}
        assert result.attempts == 3
        assert sleeps.calls == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_exhausted_budget_is_not_ok(self) -> None:
        sleeps = _Sleeps()

        async def never() -> None:
            return None

        result = await poll_until(never, PollConfig(interval=0.5, max_attempts=4), sleep=sleeps)
        assert not result.ok
        assert result.value is None
        assert result.attempts == 4
        # No sleep after the final attempt.
        assert len(sleeps.calls) == 3

    @pytest.mark.asyncio
    async def test_transient_errors_count_as_not_ready(self) -> None:
        state = {"n": 0}

        async def fetch() -> str | None:
            state["n"] += 1
            if state["n"] == 1:
                raise TimeoutError("slow")
            return "ready"

        result = await poll_until(
            fetch, PollConfig(interval=0, max_attempts=3), transient_exceptions=(TimeoutError,), sleep=_Sleeps()
        )
        assert result.value == "ready"
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self) -> None:
        async def fetch() -> None:
            raise RuntimeError("broken")

        with pytest.raises(RuntimeError):
            await poll_until(fetch, PollConfig(max_attempts=3), sleep=_Sleeps())
