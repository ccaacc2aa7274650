import asyncio

from conftest import FakeScraper, add_entry
from enime.catalog.models import AnimeStatus, RelationType
from enime.catalog.store import CatalogStore
from enime.core.constants import (EPISODE_INFO_PRIORITY, FULL_SCRAPE_PRIORITY,
                                  RECHECK_PRIORITY)
from enime.scrapers.manager import ScraperManager
from enime.services.batcher import JobBatcher
from enime.services.job_queue import JobQueue
from enime.services.scheduler import ReconciliationScheduler
from enime.services.staleness import StalenessDetector
from enime.workers.models import JobKind, WorkerResult


class FakeDispatcher:
    def __init__(self):
        self.calls = []
        self.initialized = 0
        self.shut_down = False

    async def initialize(self):
        self.initialized += 1

    async def execute(self, mode, anime_ids=None, info_only=False):
        self.calls.append((mode, anime_ids))
        return WorkerResult(mode=mode, processed=len(anime_ids or []))

    async def shutdown(self):
        self.shut_down = True

    def status(self):
        return {"name": "fake", "state": "ready"}


def make_scheduler(db, dispatcher=None):
    store = CatalogStore(db)
    registry = ScraperManager(
        [FakeScraper("Gogoanime"), FakeScraper("Zoro"), FakeScraper("Kitsu", info_only=True)]
    )
    queue = JobQueue(db)
    scheduler = ReconciliationScheduler(
        StalenessDetector(store, registry),
        JobBatcher(queue),
        dispatcher or FakeDispatcher(),
        store,
    )
    return scheduler, store, queue


async def drain(queue):
    jobs = []
    while (job := await queue.claim()) is not None:
        jobs.append(job)
    return jobs


def test_releasing_entry_behind_on_episodes_is_queued(open_database):
    async def scenario():
        async with open_database() as db:
            scheduler, store, queue = make_scheduler(db)
            anime_id = await add_entry(
                store,
                1,
                AnimeStatus.RELEASING,
                current_episode=3,
                sources={1: ["Gogoanime", "Zoro"], 2: ["Gogoanime", "Zoro"]},
            )
            await add_entry(
                store,
                2,
                AnimeStatus.RELEASING,
                current_episode=1,
                title="Bocchi the Rock!",
                sources={1: ["Gogoanime", "Zoro"]},
            )

            await scheduler.check_for_updated_episodes()
            return anime_id, await drain(queue)

    anime_id, jobs = asyncio.run(scenario())

    assert len(jobs) == 1
    assert jobs[0].kind == JobKind.SCRAPE
    assert jobs[0].anime_ids == [anime_id]
    assert jobs[0].info_only is False
    assert jobs[0].priority == RECHECK_PRIORITY


def test_finished_check_only_looks_at_finished_entries(open_database):
    async def scenario():
        async with open_database() as db:
            scheduler, store, queue = make_scheduler(db)
            await add_entry(store, 1, AnimeStatus.RELEASING, current_episode=2)
            finished = await add_entry(
                store, 2, AnimeStatus.FINISHED, current_episode=12, title="Frieren"
            )

            await scheduler.check_for_updated_episodes_for_finished_anime()
            return finished, await drain(queue)

    finished, jobs = asyncio.run(scenario())

    assert [job.anime_ids for job in jobs] == [[finished]]


def test_full_scrape_uses_weekly_priority(open_database):
    async def scenario():
        async with open_database() as db:
            scheduler, store, queue = make_scheduler(db)
            for anilist_id in range(1, 61):
                await add_entry(
                    store, anilist_id, AnimeStatus.FINISHED, current_episode=0
                )
            await add_entry(store, 100, AnimeStatus.NOT_YET_RELEASED, current_episode=0)

            await scheduler.push_to_scrape_queue()
            return await drain(queue)

    jobs = asyncio.run(scenario())

    assert [len(job.anime_ids) for job in jobs] == [50, 10]
    assert all(job.priority == FULL_SCRAPE_PRIORITY for job in jobs)
    assert all(job.info_only is False for job in jobs)


def test_weekly_jobs_run_before_rechecks(open_database):
    async def scenario():
        async with open_database() as db:
            scheduler, store, queue = make_scheduler(db)
            await add_entry(store, 1, AnimeStatus.RELEASING, current_episode=4)

            await scheduler.check_for_updated_episodes()
            await scheduler.push_to_scrape_queue()
            return await drain(queue)

    jobs = asyncio.run(scenario())

    assert [job.priority for job in jobs] == [FULL_SCRAPE_PRIORITY, RECHECK_PRIORITY]


def test_episode_info_refresh_is_info_only(open_database):
    async def scenario():
        async with open_database() as db:
            scheduler, store, queue = make_scheduler(db)
            anime_id = await add_entry(
                store, 1, AnimeStatus.RELEASING, current_episode=1, sources={1: ["Zoro"]}
            )

            await scheduler.refresh_episode_info()
            return anime_id, await drain(queue)

    anime_id, jobs = asyncio.run(scenario())

    assert [job.anime_ids for job in jobs] == [[anime_id]]
    assert jobs[0].info_only is True
    assert jobs[0].priority == EPISODE_INFO_PRIORITY


def test_update_relations_invokes_worker_with_incomplete_entries(open_database):
    dispatcher = FakeDispatcher()

    async def scenario():
        async with open_database() as db:
            scheduler, store, _ = make_scheduler(db, dispatcher)
            first = await add_entry(store, 1, AnimeStatus.FINISHED, current_episode=12)
            second = await add_entry(
                store, 2, AnimeStatus.FINISHED, current_episode=12, title="Lycoris Recoil 2"
            )
            third = await add_entry(
                store, 3, AnimeStatus.FINISHED, current_episode=12, title="Lycoris Recoil 3"
            )
            await store.replace_relations(
                second, [(1, RelationType.PREQUEL), (3, RelationType.SEQUEL)]
            )

            await scheduler.update_relations()
            return sorted([first, third])

    expected = asyncio.run(scenario())

    assert len(dispatcher.calls) == 1
    mode, anime_ids = dispatcher.calls[0]
    assert mode == JobKind.FETCH_RELATION
    assert sorted(anime_ids) == expected


def test_update_relations_skips_worker_when_nothing_to_refresh(open_database):
    dispatcher = FakeDispatcher()

    async def scenario():
        async with open_database() as db:
            scheduler, _, _ = make_scheduler(db, dispatcher)
            return await scheduler.update_relations()

    assert asyncio.run(scenario()) is None
    assert dispatcher.calls == []


def test_refetch_and_resync_go_through_dispatcher(open_database):
    dispatcher = FakeDispatcher()

    async def scenario():
        async with open_database() as db:
            scheduler, _, _ = make_scheduler(db, dispatcher)
            await scheduler.update_anime()
            await scheduler.resync_anime()

    asyncio.run(scenario())

    assert [mode for mode, _ in dispatcher.calls] == [JobKind.REFETCH, JobKind.RESYNC]
    assert dispatcher.initialized == 2


def test_failing_cadence_is_recorded(open_database):
    async def scenario():
        async with open_database() as db:
            scheduler, _, _ = make_scheduler(db)

            async def broken():
                raise RuntimeError("AniList unreachable")

            scheduler.cadences["refetch"].callback = broken
            result = await scheduler.run_cadence("refetch")
            return result, scheduler.cadences["refetch"]

    result, cadence = asyncio.run(scenario())

    assert result is None
    assert cadence.runs == 1
    assert cadence.failures == 1
    assert cadence.last_error == "AniList unreachable"


def test_start_runs_releasing_check_immediately(open_database):
    dispatcher = FakeDispatcher()

    async def scenario():
        async with open_database() as db:
            scheduler, store, queue = make_scheduler(db, dispatcher)
            await add_entry(store, 1, AnimeStatus.RELEASING, current_episode=1)

            await scheduler.start()
            enabled = len(scheduler.tasks)
            jobs = await drain(queue)
            status = scheduler.status()
            await scheduler.stop()
            return enabled, jobs, status, scheduler.tasks

    enabled, jobs, status, tasks = asyncio.run(scenario())

    assert enabled == 7
    assert len(jobs) == 1
    cadences = {cadence["name"]: cadence for cadence in status["cadences"]}
    assert cadences["releasing_check"]["runs"] == 1
    assert cadences["refetch"]["runs"] == 0
    assert cadences["episode_info_refresh"]["enabled"] is False
    assert tasks == []
    assert dispatcher.shut_down
