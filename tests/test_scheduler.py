import asyncio

from zendesk_ticket_notifier.scheduler import AsyncioScheduler


def test_schedule_after_fires_callback_once():
    async def runner():
        scheduler = AsyncioScheduler()
        calls = []

        async def callback():
            calls.append("fired")

        scheduler.schedule_after(0.01, callback)
        assert scheduler.pending
        await asyncio.sleep(0.05)
        await scheduler.drain()
        assert not scheduler.pending
        return calls

    assert asyncio.run(runner()) == ["fired"]


def test_rescheduling_replaces_pending_timer():
    async def runner():
        scheduler = AsyncioScheduler()
        calls = []

        async def first():
            calls.append("first")

        async def second():
            calls.append("second")

        scheduler.schedule_after(0.01, first)
        scheduler.schedule_after(0.01, second)
        await asyncio.sleep(0.05)
        await scheduler.drain()
        return calls

    assert asyncio.run(runner()) == ["second"]


def test_cancel_prevents_callback():
    async def runner():
        scheduler = AsyncioScheduler()
        calls = []

        async def callback():
            calls.append("fired")

        scheduler.schedule_after(0.01, callback)
        scheduler.cancel()
        scheduler.cancel()
        await asyncio.sleep(0.05)
        return calls, scheduler.pending

    calls, pending = asyncio.run(runner())
    assert calls == []
    assert pending is False


def test_failing_callback_is_logged(caplog):
    async def runner():
        scheduler = AsyncioScheduler()

        async def callback():
            raise RuntimeError("tick failed")

        scheduler.schedule_after(0, callback)
        await asyncio.sleep(0.02)
        await scheduler.drain()

    with caplog.at_level("ERROR"):
        asyncio.run(runner())
    assert "scheduled_callback_failed" in caplog.text
