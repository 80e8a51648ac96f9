import asyncio

import pytest

from mailrelay.services.background import BackgroundTaskRunner


@pytest.mark.asyncio
async def test_spawn_does_not_wait_for_the_task():
    runner = BackgroundTaskRunner()
    release = asyncio.Event()
    finished = []

    async def job():
        await release.wait()
        finished.append(True)

    runner.spawn(job(), name="job")

    assert runner.pending == 1
    assert finished == []

    release.set()
    await runner.drain()

    assert finished == [True]
    assert runner.pending == 0


@pytest.mark.asyncio
async def test_failures_stay_inside_the_runner():
    runner = BackgroundTaskRunner()

    async def broken():
        raise RuntimeError("index down")

    task = runner.spawn(broken(), name="broken")
    await runner.drain()

    assert task.done()
    assert isinstance(task.exception(), RuntimeError)
    assert runner.pending == 0


@pytest.mark.asyncio
async def test_drain_with_nothing_pending():
    await BackgroundTaskRunner().drain()
