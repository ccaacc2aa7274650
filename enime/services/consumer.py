import asyncio
from typing import Callable, List, Optional

from enime.core.logger import logger
from enime.core.models import settings
from enime.services.job_queue import JobQueue, QueuedJob, job_queue
from enime.workers.dispatcher import WorkerDispatcher


class QueueConsumer:
    """Claims queued jobs and runs each through its own worker dispatcher."""

    def __init__(
        self,
        queue: JobQueue = job_queue,
        dispatcher_factory: Callable[[str], WorkerDispatcher] = WorkerDispatcher,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        self.queue = queue
        self.dispatcher_factory = dispatcher_factory
        self.concurrency = max(1, concurrency or settings.QUEUE_CONCURRENCY)
        self.poll_interval = (
            settings.QUEUE_POLL_INTERVAL if poll_interval is None else poll_interval
        )
        self.dispatchers: List[WorkerDispatcher] = []
        self.tasks: List[asyncio.Task] = []
        self.processed = 0
        self.failed = 0

    async def start(self):
        for index in range(self.concurrency):
            dispatcher = self.dispatcher_factory(f"scrape-{index + 1}")
            self.dispatchers.append(dispatcher)
            self.tasks.append(asyncio.create_task(self._consume(dispatcher)))

        logger.log("QUEUE", f"Started {self.concurrency} queue consumer(s)")

    async def _consume(self, dispatcher: WorkerDispatcher):
        while True:
            try:
                await self.queue.requeue_stale()
                job = await self.queue.claim()
                if job is None:
                    await asyncio.sleep(self.poll_interval)
                    continue

                await self.process(dispatcher, job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in queue consumer {dispatcher.name}: {e}")
                await asyncio.sleep(self.poll_interval)

    async def process(self, dispatcher: WorkerDispatcher, job: QueuedJob) -> bool:
        logger.log(
            "QUEUE",
            f"[{dispatcher.name}] Processing {job.kind.value} job {job.id[:8]} ({len(job.anime_ids)} ids, info_only={job.info_only}, attempt {job.attempts})",
        )

        try:
            await dispatcher.initialize()
            result = await dispatcher.execute(job.kind, job.anime_ids, job.info_only)
        except Exception as e:
            self.failed += 1
            await self.queue.fail(job, str(e))
            return False

        self.processed += 1
        await self.queue.complete(job)
        logger.log(
            "QUEUE",
            f"[{dispatcher.name}] Job {job.id[:8]} done: updated={result.updated} skipped={result.skipped} failed={result.failed}",
        )
        return True

    async def stop(self):
        for task in self.tasks:
            task.cancel()
        for task in self.tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.tasks.clear()

        for dispatcher in self.dispatchers:
            await dispatcher.shutdown()
        self.dispatchers.clear()

    def status(self):
        return {
            "consumers": [dispatcher.status() for dispatcher in self.dispatchers],
            "processed": self.processed,
            "failed": self.failed,
        }
