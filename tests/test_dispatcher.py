import asyncio
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures.process import BrokenProcessPool

import pytest

from enime.workers.dispatcher import (DispatcherState, WorkerDispatcher,
                                     process_executor)
from enime.workers.exceptions import (DispatcherBusy, DispatcherNotReady,
                                      WorkerCrash, WorkerTimeout)
from enime.workers.models import JobKind, WorkerResult

release = threading.Event()


def thread_executor():
    return ThreadPoolExecutor(max_workers=1)


def succeeding_target(mode, anime_ids, info_only):
    return {"mode": mode, "processed": len(anime_ids or []), "updated": 1}


def blocking_target(mode, anime_ids, info_only):
    release.wait(5)
    return {"mode": mode}


def crashing_target(mode, anime_ids, info_only):
    raise BrokenProcessPool("worker process exited abruptly")


def failing_target(mode, anime_ids, info_only):
    raise RuntimeError("database unavailable")


def exiting_target(mode, anime_ids, info_only):
    os._exit(3)


def make_dispatcher(target, timeout=10):
    return WorkerDispatcher(
        "test", executor_factory=thread_executor, target=target, timeout=timeout
    )


def test_execute_before_initialize_is_rejected():
    dispatcher = make_dispatcher(succeeding_target)

    with pytest.raises(DispatcherNotReady):
        asyncio.run(dispatcher.execute(JobKind.REFETCH))


def test_execute_returns_worker_result():
    dispatcher = make_dispatcher(succeeding_target)

    async def scenario():
        await dispatcher.initialize()
        result = await dispatcher.execute(JobKind.FETCH_RELATION, ["a", "b"])
        await dispatcher.shutdown()
        return result

    result = asyncio.run(scenario())

    assert isinstance(result, WorkerResult)
    assert result.mode == JobKind.FETCH_RELATION
    assert result.processed == 2
    assert dispatcher.last_result == result


def test_concurrent_execute_is_rejected_while_busy():
    release.clear()
    dispatcher = make_dispatcher(blocking_target)

    async def scenario():
        await dispatcher.initialize()
        first = asyncio.create_task(dispatcher.execute(JobKind.REFETCH))
        await asyncio.sleep(0)
        assert dispatcher.state == DispatcherState.BUSY

        with pytest.raises(DispatcherBusy):
            await dispatcher.execute(JobKind.RESYNC)

        release.set()
        result = await first
        await dispatcher.shutdown()
        return result

    result = asyncio.run(scenario())

    assert result.mode == JobKind.REFETCH


def test_crash_returns_to_uninitialized_and_recovers():
    dispatcher = make_dispatcher(crashing_target)

    async def scenario():
        await dispatcher.initialize()
        with pytest.raises(WorkerCrash):
            await dispatcher.execute(JobKind.SCRAPE, ["a"])
        assert dispatcher.state == DispatcherState.UNINITIALIZED

        with pytest.raises(DispatcherNotReady):
            await dispatcher.execute(JobKind.SCRAPE, ["a"])

        dispatcher.target = succeeding_target
        await dispatcher.initialize()
        result = await dispatcher.execute(JobKind.SCRAPE, ["a"])
        await dispatcher.shutdown()
        return result

    result = asyncio.run(scenario())

    assert result.processed == 1
    assert dispatcher.state == DispatcherState.UNINITIALIZED


def test_timeout_tears_down_worker():
    release.clear()
    dispatcher = make_dispatcher(blocking_target, timeout=0.05)

    async def scenario():
        await dispatcher.initialize()
        try:
            with pytest.raises(WorkerTimeout):
                await dispatcher.execute(JobKind.RESYNC)
        finally:
            release.set()

    asyncio.run(scenario())

    assert dispatcher.state == DispatcherState.UNINITIALIZED
    assert dispatcher.executor is None
    assert "timeout" in dispatcher.last_error


def test_worker_error_keeps_dispatcher_ready():
    dispatcher = make_dispatcher(failing_target)

    async def scenario():
        await dispatcher.initialize()
        with pytest.raises(RuntimeError):
            await dispatcher.execute(JobKind.REFETCH)
        state = dispatcher.state
        await dispatcher.shutdown()
        return state

    assert asyncio.run(scenario()) == DispatcherState.READY


def test_worker_process_exit_is_reported_as_crash():
    dispatcher = WorkerDispatcher(
        "process", executor_factory=process_executor, target=exiting_target, timeout=120
    )

    async def scenario():
        await dispatcher.initialize()
        with pytest.raises(WorkerCrash):
            await dispatcher.execute(JobKind.SCRAPE, ["a", "b"])
        assert dispatcher.state == DispatcherState.UNINITIALIZED
        assert dispatcher.executor is None

        dispatcher.target = succeeding_target
        await dispatcher.initialize()
        result = await dispatcher.execute(JobKind.SCRAPE, ["a", "b"])
        await dispatcher.shutdown()
        return result

    result = asyncio.run(scenario())

    assert result.processed == 2
    assert dispatcher.state == DispatcherState.UNINITIALIZED
