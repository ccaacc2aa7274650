from typing import Iterable, List

from enime.core.constants import MAX_BATCH_SIZE, RECHECK_PRIORITY
from enime.core.models import settings
from enime.services.job_queue import JobQueue, job_queue
from enime.workers.models import Job, JobKind


def chunk_ids(ids: Iterable[str], size: int = MAX_BATCH_SIZE) -> List[List[str]]:
    if size <= 0 or size > MAX_BATCH_SIZE:
        raise ValueError(f"Batch size must be between 1 and {MAX_BATCH_SIZE}")

    chunks = []
    current = []
    for anime_id in dict.fromkeys(ids):
        current.append(anime_id)
        if len(current) == size:
            chunks.append(current)
            current = []

    if current:
        chunks.append(current)
    return chunks


class JobBatcher:
    def __init__(self, queue: JobQueue = job_queue, batch_size: int = None):
        self.queue = queue
        self.batch_size = batch_size or settings.BATCH_SIZE

    async def batch(
        self,
        ids: Iterable[str],
        kind: JobKind = JobKind.SCRAPE,
        info_only: bool = False,
        priority: int = RECHECK_PRIORITY,
    ) -> List[Job]:
        jobs = [
            Job(kind=kind, anime_ids=chunk, info_only=info_only, priority=priority)
            for chunk in chunk_ids(ids, self.batch_size)
        ]

        for job in jobs:
            await self.queue.enqueue(
                job.payload(),
                priority=job.priority,
                remove_on_complete=True,
                kind=job.kind,
            )

        return jobs
