import asyncio

import pytest

from nomad_mcp_pack.core.errors import GracefulShutdown, WatchDeadlineExceeded
from nomad_mcp_pack.utils.context import WatchContext


def test_live_context_has_no_error():
    ctx = WatchContext()

    assert not ctx.done()
    assert ctx.error() is None
    assert ctx.remaining() is None
    ctx.raise_if_done()


def test_cancel_is_graceful():
    ctx = WatchContext()
    ctx.cancel()
    ctx.cancel()

    assert ctx.done()
    assert ctx.cancelled
    assert isinstance(ctx.error(), GracefulShutdown)
    with pytest.raises(GracefulShutdown):
        ctx.raise_if_done()


def test_expired_deadline_is_a_timeout():
    ctx = WatchContext(timeout=0)

    assert ctx.done()
    assert not ctx.cancelled
    err = ctx.error()
    assert isinstance(err, WatchDeadlineExceeded)
    assert isinstance(err, TimeoutError)


@pytest.mark.asyncio
async def test_sleep_wakes_on_cancel():
    ctx = WatchContext()
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, ctx.cancel)

    started = loop.time()
    assert await ctx.sleep(10) is True
    assert loop.time() - started < 1


@pytest.mark.asyncio
async def test_sleep_full_delay():
    ctx = WatchContext()
    assert await ctx.sleep(0.01) is False


@pytest.mark.asyncio
async def test_sleep_stops_at_deadline():
    ctx = WatchContext(timeout=0.02)

    assert await ctx.sleep(10) is True
    assert isinstance(ctx.error(), WatchDeadlineExceeded)


@pytest.mark.asyncio
async def test_run_returns_result():
    ctx = WatchContext()

    async def work():
        await asyncio.sleep(0)
        return 42

    assert await ctx.run(work()) == 42


@pytest.mark.asyncio
async def test_run_abandons_work_on_cancel():
    ctx = WatchContext()
    abandoned = asyncio.Event()

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            abandoned.set()
            raise

    asyncio.get_running_loop().call_later(0.01, ctx.cancel)

    with pytest.raises(GracefulShutdown):
        await ctx.run(slow())
    assert abandoned.is_set()


@pytest.mark.asyncio
async def test_run_abandons_work_at_deadline():
    ctx = WatchContext(timeout=0.02)

    with pytest.raises(WatchDeadlineExceeded):
        await ctx.run(asyncio.sleep(10))


@pytest.mark.asyncio
async def test_run_on_finished_context_does_not_start_work():
    ctx = WatchContext()
    ctx.cancel()
    started = []

    async def work():
        started.append(True)

    with pytest.raises(GracefulShutdown):
        await ctx.run(work())
    assert started == []


@pytest.mark.asyncio
async def test_run_propagates_errors():
    ctx = WatchContext()

    async def broken():
        raise ValueError("bad")

    with pytest.raises(ValueError, match="bad"):
        await ctx.run(broken())
