"""Tests for the background dispatcher."""

import asyncio

import pytest

from ordercore.application.dispatcher import BackgroundDispatcher


class TestBackgroundDispatcher:
    """Tests for BackgroundDispatcher."""

    @pytest.mark.asyncio
    async def test_jobs_run_after_submit(self) -> None:
        dispatcher = BackgroundDispatcher(max_concurrency=2)
        done = []

        async def job(n: int) -> None:
            done.append(n)

        for n in range(3):
            dispatcher.submit("job", lambda n=n: job(n), n=n)
        await dispatcher.drain()

        assert sorted(done) == [0, 1, 2]
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_failed_job_does_not_propagate(self) -> None:
        dispatcher = BackgroundDispatcher()

        async def boom() -> None:
            raise RuntimeError("remote down")

        task = dispatcher.submit("boom", boom, order_id="ord_1")
        await dispatcher.drain()

        assert task.done()
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        dispatcher = BackgroundDispatcher(max_concurrency=2)
        running = 0
        peak = 0

        async def job() -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        for _ in range(6):
            dispatcher.submit("job", job)
        await dispatcher.drain()

        assert peak == 2

    @pytest.mark.asyncio
    async def test_drain_waits_for_jobs_submitted_by_jobs(self) -> None:
        dispatcher = BackgroundDispatcher()
        done = []

        async def child() -> None:
            done.append("child")

        async def parent() -> None:
            dispatcher.submit("child", child)
            done.append("parent")

        dispatcher.submit("parent", parent)
        await dispatcher.drain()

        assert done == ["parent", "child"]
