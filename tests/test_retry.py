from app.services.retry import retry_read, run_with_backoff


async def test_retry_read_stops_at_first_ready_value():
    values = iter([None, {"ready": False}, {"ready": True}, {"ready": True}])
    calls = []

    async def fetch():
        calls.append(1)
        return next(values)

    result = await retry_read(fetch, lambda v: v["ready"], attempts=5, delay_seconds=0)
    assert result == {"ready": True}
    assert len(calls) == 3


async def test_retry_read_returns_last_value_when_never_ready():
    async def fetch():
        return {"ready": False}

    result = await retry_read(fetch, lambda v: v["ready"], attempts=2, delay_seconds=0)
    assert result == {"ready": False}


async def test_backoff_counts_exceptions_as_failed_attempts():
    attempts = []

    async def attempt(n):
        attempts.append(n)
        if n == 1:
            raise RuntimeError("db blip")
        return n == 3

    assert await run_with_backoff(attempt, [0, 0, 0, 0], name="test") is True
    assert attempts == [1, 2, 3]


async def test_backoff_gives_up():
    async def attempt(n):
        return False

    assert await run_with_backoff(attempt, [0, 0], name="test") is False
