import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from enime.catalog.models import AnimeStatus, EntryCondition
from enime.catalog.store import CatalogStore, catalog_store
from enime.core.constants import (EPISODE_INFO_PRIORITY, FULL_SCRAPE_PRIORITY,
                                  RECHECK_PRIORITY)
from enime.core.execution import now
from enime.core.logger import logger
from enime.core.models import settings
from enime.services.batcher import JobBatcher
from enime.services.staleness import StalenessDetector
from enime.workers.dispatcher import WorkerDispatcher
from enime.workers.models import Job, JobKind


@dataclass
class Cadence:
    name: str
    interval: float
    callback: Callable[[], Awaitable]
    enabled: bool = True
    runs: int = 0
    failures: int = 0
    last_run: Optional[float] = None
    last_error: Optional[str] = None


class ReconciliationScheduler:
    def __init__(
        self,
        detector: StalenessDetector,
        batcher: JobBatcher,
        dispatcher: WorkerDispatcher,
        store: CatalogStore = catalog_store,
    ):
        self.detector = detector
        self.batcher = batcher
        self.dispatcher = dispatcher
        self.store = store
        self.tasks: List[asyncio.Task] = []
        self._dispatch_lock = asyncio.Lock()
        self.cadences: Dict[str, Cadence] = {
            cadence.name: cadence
            for cadence in [
                Cadence("refetch", settings.REFETCH_INTERVAL, self.update_anime),
                Cadence("resync", settings.RESYNC_INTERVAL, self.resync_anime),
                Cadence(
                    "releasing_check",
                    settings.RELEASING_CHECK_INTERVAL,
                    self.check_for_updated_episodes,
                ),
                Cadence(
                    "missing_episodes_check",
                    settings.MISSING_EPISODES_CHECK_INTERVAL,
                    self.check_for_updated_episodes_for_anime_without_episodes,
                ),
                Cadence(
                    "finished_check",
                    settings.FINISHED_CHECK_INTERVAL,
                    self.check_for_updated_episodes_for_finished_anime,
                ),
                Cadence(
                    "relation_refresh",
                    settings.RELATION_REFRESH_INTERVAL,
                    self.update_relations,
                ),
                Cadence(
                    "full_scrape",
                    settings.FULL_SCRAPE_INTERVAL,
                    self.push_to_scrape_queue,
                ),
                Cadence(
                    "episode_info_refresh",
                    settings.EPISODE_INFO_REFRESH_INTERVAL,
                    self.refresh_episode_info,
                    enabled=bool(settings.EPISODE_INFO_REFRESH_ENABLED),
                ),
            ]
        }

    async def execute_worker(self, mode: JobKind, anime_ids: Optional[List[str]] = None):
        # Metadata invocations share one dispatcher, so they wait for each other
        async with self._dispatch_lock:
            await self.dispatcher.initialize()
            return await self.dispatcher.execute(mode, anime_ids)

    async def update_anime(self):
        logger.log("SCHEDULER", "Refetching currently releasing anime from AniList")
        return await self.execute_worker(JobKind.REFETCH)

    async def resync_anime(self):
        return await self.execute_worker(JobKind.RESYNC)

    async def update_on_condition(
        self, condition: EntryCondition, priority: int = RECHECK_PRIORITY
    ) -> List[Job]:
        stale = await self.detector.detect_stale(condition)
        return await self.batcher.batch(
            [entry.id for entry in stale],
            kind=JobKind.SCRAPE,
            info_only=False,
            priority=priority,
        )

    async def check_for_updated_episodes(self):
        return await self.update_on_condition(
            EntryCondition(statuses=[AnimeStatus.RELEASING])
        )

    async def check_for_updated_episodes_for_anime_without_episodes(self):
        return await self.update_on_condition(
            EntryCondition(
                statuses=[AnimeStatus.RELEASING, AnimeStatus.FINISHED],
                last_episode_update_null=True,
            )
        )

    async def check_for_updated_episodes_for_finished_anime(self):
        return await self.update_on_condition(
            EntryCondition(statuses=[AnimeStatus.FINISHED])
        )

    async def update_relations(self):
        anime_ids = await self.detector.detect_relation_refresh()
        if not anime_ids:
            return None
        return await self.execute_worker(JobKind.FETCH_RELATION, anime_ids)

    async def push_to_scrape_queue(self):
        anime_ids = await self.store.find_ids(
            EntryCondition(statuses=[AnimeStatus.RELEASING, AnimeStatus.FINISHED])
        )
        return await self.batcher.batch(
            anime_ids,
            kind=JobKind.SCRAPE,
            info_only=False,
            priority=FULL_SCRAPE_PRIORITY,
        )

    async def refresh_episode_info(self):
        anime_ids = await self.store.find_ids(EntryCondition(episodes_missing_title=True))
        return await self.batcher.batch(
            anime_ids,
            kind=JobKind.SCRAPE,
            info_only=True,
            priority=EPISODE_INFO_PRIORITY,
        )

    async def run_cadence(self, name: str):
        cadence = self.cadences[name]
        cadence.last_run = now()
        cadence.runs += 1
        try:
            result = await cadence.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            cadence.failures += 1
            cadence.last_error = str(e)
            logger.error(f"Scheduled {name} failed: {e}")
            return None

        cadence.last_error = None
        return result

    async def _loop(self, cadence: Cadence):
        while True:
            await asyncio.sleep(cadence.interval)
            await self.run_cadence(cadence.name)

    async def start(self):
        for cadence in self.cadences.values():
            if not cadence.enabled:
                continue
            self.tasks.append(
                asyncio.create_task(self._loop(cadence), name=f"cadence-{cadence.name}")
            )

        logger.log(
            "SCHEDULER",
            f"Scheduler started with {len(self.tasks)} cadences, running the releasing check now",
        )
        await self.run_cadence("releasing_check")

    async def stop(self):
        for task in self.tasks:
            task.cancel()
        for task in self.tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.tasks.clear()
        await self.dispatcher.shutdown()

    def status(self):
        return {
            "dispatcher": self.dispatcher.status(),
            "cadences": [
                {
                    "name": cadence.name,
                    "enabled": cadence.enabled,
                    "interval": cadence.interval,
                    "runs": cadence.runs,
                    "failures": cadence.failures,
                    "last_run": cadence.last_run,
                    "last_error": cadence.last_error,
                }
                for cadence in self.cadences.values()
            ],
        }
