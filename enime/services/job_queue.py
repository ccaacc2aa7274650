import asyncio
import uuid
from typing import Optional

import orjson
from databases import Database
from pydantic import BaseModel

from enime.core.execution import now
from enime.core.logger import logger
from enime.core.models import database, settings
from enime.workers.models import JobKind


class QueuedJob(BaseModel):
    id: str
    kind: JobKind
    payload: dict
    priority: int
    attempts: int
    remove_on_complete: bool

    @property
    def anime_ids(self):
        return self.payload.get("animeIds", [])

    @property
    def info_only(self):
        return bool(self.payload.get("infoOnly", False))


class JobQueue:
    """
    Durable priority queue stored in the `jobs` table.

    Jobs are claimed in ascending priority, then submission order. A claimed
    job holds a lease; leases that expire are put back to waiting so delivery
    is at-least-once.
    """

    def __init__(
        self,
        db: Database = database,
        max_attempts: Optional[int] = None,
        lease_ttl: Optional[int] = None,
    ):
        self.db = db
        self.max_attempts = max_attempts or settings.QUEUE_MAX_ATTEMPTS
        self.lease_ttl = lease_ttl or settings.QUEUE_LEASE_TTL
        self._enqueue_lock = asyncio.Lock()

    async def enqueue(
        self,
        payload: dict,
        priority: int,
        remove_on_complete: bool = True,
        kind: JobKind = JobKind.SCRAPE,
    ) -> str:
        job_id = str(uuid.uuid4())
        # One statement so sqlite takes the write lock up front, the lock keeps seq unique on postgres
        async with self._enqueue_lock:
            await self.db.execute(
                """
                INSERT INTO jobs (id, kind, payload, priority, remove_on_complete, status, attempts, created_at, seq)
                SELECT :id, :kind, :payload, CAST(:priority AS INTEGER), CAST(:remove_on_complete AS BOOLEAN),
                    'waiting', 0, CAST(:created_at AS REAL), COALESCE(MAX(seq), 0) + 1
                FROM jobs
                """,
                {
                    "id": job_id,
                    "kind": JobKind(kind).value,
                    "payload": orjson.dumps(payload).decode("utf-8"),
                    "priority": priority,
                    "remove_on_complete": remove_on_complete,
                    "created_at": now(),
                },
            )

        logger.log(
            "QUEUE",
            f"Enqueued {kind.value if isinstance(kind, JobKind) else kind} job {job_id[:8]} with {len(payload.get('animeIds', []))} ids (priority {priority})",
        )
        return job_id

    async def claim(self) -> Optional[QueuedJob]:
        while True:
            row = await self.db.fetch_one(
                """
                SELECT id FROM jobs
                WHERE status = 'waiting'
                ORDER BY priority ASC, seq ASC
                LIMIT 1
                """
            )
            if row is None:
                return None

            token = str(uuid.uuid4())
            await self.db.execute(
                """
                UPDATE jobs SET status = 'active', attempts = attempts + 1,
                    locked_until = :locked_until, claimed_by = :token
                WHERE id = :id AND status = 'waiting'
                """,
                {"id": row["id"], "locked_until": now() + self.lease_ttl, "token": token},
            )

            claimed = await self.db.fetch_one(
                "SELECT * FROM jobs WHERE id = :id AND claimed_by = :token",
                {"id": row["id"], "token": token},
            )
            # Lost the race to another consumer, try the next job
            if claimed is None:
                continue

            return QueuedJob(
                id=claimed["id"],
                kind=claimed["kind"],
                payload=orjson.loads(claimed["payload"]),
                priority=claimed["priority"],
                attempts=claimed["attempts"],
                remove_on_complete=bool(claimed["remove_on_complete"]),
            )

    async def complete(self, job: QueuedJob):
        if job.remove_on_complete:
            await self.db.execute("DELETE FROM jobs WHERE id = :id", {"id": job.id})
        else:
            await self.db.execute(
                "UPDATE jobs SET status = 'completed', locked_until = NULL WHERE id = :id",
                {"id": job.id},
            )

    async def fail(self, job: QueuedJob, error: str):
        status = "failed" if job.attempts >= self.max_attempts else "waiting"
        await self.db.execute(
            """
            UPDATE jobs SET status = :status, last_error = :error, locked_until = NULL, claimed_by = NULL
            WHERE id = :id
            """,
            {"status": status, "error": error, "id": job.id},
        )
        logger.log(
            "QUEUE",
            f"Job {job.id[:8]} failed (attempt {job.attempts}/{self.max_attempts}), {'giving up' if status == 'failed' else 'will retry'}: {error}",
        )

    async def requeue_stale(self) -> int:
        current_time = now()
        stale = await self.db.fetch_val(
            "SELECT COUNT(*) FROM jobs WHERE status = 'active' AND locked_until < :now",
            {"now": current_time},
        )
        if stale:
            await self.db.execute(
                """
                UPDATE jobs SET status = 'waiting', locked_until = NULL, claimed_by = NULL
                WHERE status = 'active' AND locked_until < :now
                """,
                {"now": current_time},
            )
            logger.log("QUEUE", f"Requeued {stale} jobs with expired leases")
        return stale or 0

    async def counts(self):
        rows = await self.db.fetch_all(
            "SELECT status, COUNT(*) AS count FROM jobs GROUP BY status"
        )
        counts = {"waiting": 0, "active": 0, "completed": 0, "failed": 0}
        for row in rows:
            counts[row["status"]] = int(row["count"])
        return counts


job_queue = JobQueue()
