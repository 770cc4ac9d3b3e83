import pytest

from leadscout.errors import CircuitOpen, UpstreamError


def test_breaker_opens_at_threshold(breaker):
    for _ in range(9):
        breaker.record_failure()
    assert breaker.state == "CLOSED"
    breaker.record_failure()
    assert breaker.state == "OPEN"
    assert breaker.open_until == pytest.approx(breaker.last_failure_time + 120)
    with pytest.raises(CircuitOpen) as ei:
        breaker.check()
    assert ei.value.retry_after_s == pytest.approx(120)


def test_breaker_ignores_stale_failure_burst(breaker, fake_clock):
    for _ in range(9):
        breaker.record_failure()
    fake_clock.box["now"] += 61
    breaker.record_failure()
    assert breaker.state == "CLOSED"


def test_breaker_closes_after_cool_off(breaker, fake_clock):
    for _ in range(10):
        breaker.record_failure()
    fake_clock.box["now"] += 120
    assert not breaker.allow()
    fake_clock.box["now"] += 1
    breaker.check()
    assert breaker.state == "CLOSED"
    assert breaker.failure_count == 0


def test_success_decrements_without_going_negative(breaker):
    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    assert breaker.failure_count == 1
    breaker.record_success()
    breaker.record_success()
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_open_breaker_rejects_without_reaching_upstream(make_gateway, breaker, fake_clock):
    gw = make_gateway(breaker=breaker, max_attempts=1)
    calls = {"n": 0}

    async def failing():
        calls["n"] += 1
        raise UpstreamError("overloaded", status_code=503)

    for _ in range(10):
        with pytest.raises(UpstreamError):
            await gw.call(failing)
    assert calls["n"] == 10
    assert breaker.state == "OPEN"

    with pytest.raises(CircuitOpen):
        await gw.call(failing)
    assert calls["n"] == 10

    async def healthy():
        calls["n"] += 1
        return "ok"

    fake_clock.box["now"] += 121
    assert await gw.call(healthy) == "ok"
    assert breaker.state == "CLOSED"
    assert calls["n"] == 11


@pytest.mark.asyncio
async def test_circuit_open_is_not_retried(make_gateway, breaker):
    gw = make_gateway(breaker=breaker, max_attempts=5)
    for _ in range(10):
        breaker.record_failure()

    async def never():
        raise AssertionError("upstream reached")

    with pytest.raises(CircuitOpen):
        await gw.call(never)
    assert gw.sleeps == []
