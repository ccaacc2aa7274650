import asyncio
import multiprocessing
from concurrent.futures import BrokenExecutor, Executor, ProcessPoolExecutor
from enum import Enum
from typing import Callable, Iterable, Optional

from enime.core.logger import logger
from enime.core.models import settings
from enime.workers.exceptions import (DispatcherBusy, DispatcherNotReady,
                                      WorkerCrash, WorkerTimeout)
from enime.workers.models import JobKind, WorkerResult
from enime.workers.tasks import run_worker, worker_ready


class DispatcherState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    BUSY = "busy"


def process_executor():
    return ProcessPoolExecutor(
        max_workers=1, mp_context=multiprocessing.get_context("spawn")
    )


def terminate_executor(executor: Executor):
    processes = list((getattr(executor, "_processes", None) or {}).values())
    executor.shutdown(wait=False, cancel_futures=True)
    for process in processes:
        if process.is_alive():
            process.terminate()


class WorkerDispatcher:
    """
    Runs worker invocations in an isolated worker, one at a time.

    uninitialized -> ready (initialize) -> busy (execute) -> ready; a crashed
    or timed out worker is torn down and the dispatcher goes back to
    uninitialized until `initialize` is called again.
    """

    def __init__(
        self,
        name: str,
        executor_factory: Callable[[], Executor] = process_executor,
        target: Callable = run_worker,
        timeout: Optional[float] = None,
    ):
        self.name = name
        self.executor_factory = executor_factory
        self.target = target
        self.timeout = timeout or settings.WORKER_TIMEOUT
        self.executor: Optional[Executor] = None
        self.state = DispatcherState.UNINITIALIZED
        self.current_mode: Optional[JobKind] = None
        self.last_result: Optional[WorkerResult] = None
        self.last_error: Optional[str] = None

    async def initialize(self):
        if self.state == DispatcherState.BUSY:
            raise DispatcherBusy(self.current_mode.value)
        if self.state == DispatcherState.READY:
            return

        loop = asyncio.get_running_loop()
        self.executor = self.executor_factory()
        try:
            await loop.run_in_executor(self.executor, worker_ready)
        except Exception:
            self._teardown()
            raise

        self.state = DispatcherState.READY
        logger.log("WORKER", f"[{self.name}] Worker ready")

    async def execute(
        self,
        mode: JobKind,
        anime_ids: Optional[Iterable[str]] = None,
        info_only: bool = False,
    ) -> WorkerResult:
        if self.state == DispatcherState.UNINITIALIZED:
            raise DispatcherNotReady()
        if self.state == DispatcherState.BUSY:
            raise DispatcherBusy(self.current_mode.value)

        mode = JobKind(mode)
        self.state = DispatcherState.BUSY
        self.current_mode = mode
        loop = asyncio.get_running_loop()

        try:
            future = loop.run_in_executor(
                self.executor,
                self.target,
                mode.value,
                list(anime_ids) if anime_ids is not None else None,
                info_only,
            )
            raw_result = await asyncio.wait_for(future, self.timeout)
        except BrokenExecutor as e:
            self.last_error = f"crash: {e}"
            self._teardown()
            logger.error(f"[{self.name}] Worker crashed during {mode.value}: {e}")
            raise WorkerCrash(mode.value, str(e) or type(e).__name__) from e
        except asyncio.TimeoutError as e:
            self.last_error = f"timeout after {self.timeout}s"
            self._teardown()
            logger.error(f"[{self.name}] Worker timed out during {mode.value}")
            raise WorkerTimeout(mode.value, self.timeout) from e
        except asyncio.CancelledError:
            self._teardown()
            raise
        except Exception as e:
            self.last_error = str(e)
            self.state = DispatcherState.READY
            logger.error(f"[{self.name}] Worker failed during {mode.value}: {e}")
            raise
        finally:
            self.current_mode = None

        self.state = DispatcherState.READY
        self.last_error = None
        self.last_result = WorkerResult.model_validate(raw_result)
        return self.last_result

    def _teardown(self):
        if self.executor is not None:
            terminate_executor(self.executor)
        self.executor = None
        self.state = DispatcherState.UNINITIALIZED

    async def shutdown(self):
        self._teardown()

    def status(self):
        return {
            "name": self.name,
            "state": self.state.value,
            "last_error": self.last_error,
            "last_result": self.last_result.model_dump(mode="json")
            if self.last_result
            else None,
        }
