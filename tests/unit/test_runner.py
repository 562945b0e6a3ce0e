"""Unit tests for background operation tracking."""

from __future__ import annotations

import asyncio

import pytest

from platform_lifecycle.api.runner import BackgroundOperations


@pytest.mark.asyncio
class TestBackgroundOperations:
    async def test_spawn_tracks_until_done(self):
        operations = BackgroundOperations()
        release = asyncio.Event()

        async def work() -> str:
            await release.wait()
            return "done"

        task = operations.spawn(work(), name="work")
        assert len(operations) == 1
        release.set()
        assert await task == "done"
        await asyncio.sleep(0)
        assert len(operations) == 0

    async def test_drain_waits(self):
        operations = BackgroundOperations()
        finished: list[str] = []

        async def work() -> None:
            await asyncio.sleep(0.01)
            finished.append("ok")

        operations.spawn(work())
        await operations.drain(timeout=1.0)
        assert finished == ["ok"]

    async def test_drain_timeout_leaves_task_running(self):
        operations = BackgroundOperations()
        release = asyncio.Event()
        task = operations.spawn(release.wait())
        await operations.drain(timeout=0.01)
        assert not task.done()
        release.set()
        await task

    async def test_drain_without_tasks(self):
        await BackgroundOperations().drain()
