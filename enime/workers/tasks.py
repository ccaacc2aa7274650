import asyncio
import time
from typing import List, Optional

import aiohttp

from enime.catalog.models import AnimeStatus, CatalogEntry
from enime.catalog.store import CatalogStore
from enime.core.constants import MAX_BATCH_SIZE
from enime.core.database import setup_database, teardown_database
from enime.core.execution import setup_runtime
from enime.core.logger import log_scraper_error, logger, setupLogger
from enime.core.models import database, settings
from enime.metadata.anilist import AnilistApi
from enime.scrapers.base import BaseScraper
from enime.scrapers.exceptions import FetchFailure, MatchNotFound
from enime.scrapers.manager import ScraperManager, scraper_manager
from enime.utils.network_manager import network_manager
from enime.workers.models import JobKind, WorkerResult


def worker_ready():
    return True


async def refetch(api: AnilistApi, store: CatalogStore, result: WorkerResult):
    async for media in api.iter_media(
        statuses=[AnimeStatus.RELEASING, AnimeStatus.NOT_YET_RELEASED]
    ):
        await store.upsert_anime(**media)
        result.processed += 1
        result.updated += 1


async def resync(
    api: AnilistApi,
    store: CatalogStore,
    result: WorkerResult,
    anime_ids: Optional[List[str]] = None,
):
    anilist_ids = list((await store.get_anilist_ids(anime_ids)).values())
    for i in range(0, len(anilist_ids), MAX_BATCH_SIZE):
        chunk = anilist_ids[i : i + MAX_BATCH_SIZE]
        seen = 0
        async for media in api.iter_media(ids=chunk):
            await store.upsert_anime(**media)
            seen += 1
        result.processed += len(chunk)
        result.updated += seen
        result.skipped += len(chunk) - seen


async def fetch_relations(
    api: AnilistApi, store: CatalogStore, result: WorkerResult, anime_ids: List[str]
):
    anilist_ids = await store.get_anilist_ids(anime_ids)
    for anime_id in anime_ids:
        result.processed += 1
        anilist_id = anilist_ids.get(anime_id)
        if anilist_id is None:
            result.skipped += 1
            continue

        relations = await api.get_relations(anilist_id)
        if relations is None:
            result.failed += 1
            continue

        await store.replace_relations(anime_id, relations)
        result.updated += 1


async def match_entry(scraper: BaseScraper, store: CatalogStore, entry: CatalogEntry):
    locator = await store.get_mapping(entry.id, scraper.name)
    if locator:
        return locator

    titles = entry.titles
    if not titles:
        raise MatchNotFound(scraper.name, entry.id)

    candidate = await scraper.match(titles[0], [*titles[1:], *entry.synonyms])
    await store.set_mapping(entry.id, scraper.name, candidate.locator, candidate.title)
    logger.log(
        "SCRAPER",
        f"{scraper.name} matched '{titles[0]}' to '{candidate.title}' ({candidate.locator})",
    )
    return candidate.locator


async def scrape_entry(
    store: CatalogStore,
    registry: ScraperManager,
    anime_id: str,
    info_only: bool,
    result: WorkerResult,
):
    entry = await store.get_entry(anime_id)
    result.processed += 1
    if entry is None:
        logger.log("WORKER", f"Catalog entry {anime_id} no longer exists, skipping")
        result.skipped += 1
        return

    for scraper in registry.active(info_only=info_only):
        try:
            locator = await match_entry(scraper, store, entry)
        except MatchNotFound as e:
            logger.log("SCRAPER", f"{e}")
            result.skipped += 1
            continue
        except Exception as e:
            log_scraper_error(scraper.name, anime_id, e)
            result.failed += 1
            continue

        if info_only:
            numbers = [episode.number for episode in entry.episodes if not episode.title]
        else:
            existing = await store.source_numbers(anime_id, scraper.name)
            numbers = [
                number
                for number in range(1, entry.current_episode + 1)
                if number not in existing
            ]

        for number in numbers:
            try:
                fetched = await scraper.fetch(locator, number)
            except FetchFailure as e:
                logger.log("SCRAPER", f"{e}")
                result.failed += 1
                continue
            except Exception as e:
                log_scraper_error(scraper.name, anime_id, e)
                result.failed += 1
                continue

            if info_only:
                if fetched.title:
                    await store.set_episode_title(anime_id, number, fetched.title)
                    result.updated += 1
            elif await store.add_episode_source(
                anime_id, number, scraper.name, fetched.locator
            ):
                result.updated += 1


async def scrape(
    store: CatalogStore,
    registry: ScraperManager,
    result: WorkerResult,
    anime_ids: List[str],
    info_only: bool = False,
):
    for anime_id in anime_ids:
        await scrape_entry(store, registry, anime_id, info_only, result)


async def run(mode: JobKind, anime_ids: Optional[List[str]], info_only: bool):
    result = WorkerResult(mode=mode)
    start_time = time.time()
    store = CatalogStore(database)

    await setup_database(database)
    try:
        if mode == JobKind.SCRAPE:
            await scrape(store, scraper_manager, result, anime_ids or [], info_only)
        else:
            async with aiohttp.ClientSession() as session:
                api = AnilistApi(session)
                if mode == JobKind.REFETCH:
                    await refetch(api, store, result)
                elif mode == JobKind.RESYNC:
                    await resync(api, store, result, anime_ids)
                elif mode == JobKind.FETCH_RELATION:
                    await fetch_relations(api, store, result, anime_ids or [])
    finally:
        await network_manager.close_all()
        await teardown_database(database)

    result.duration = time.time() - start_time
    return result


def run_worker(mode: str, anime_ids: Optional[List[str]] = None, info_only: bool = False):
    """Entry point executed inside the isolated worker process."""
    setup_runtime(settings.DETERMINISTIC_TIME_MODE)
    setupLogger(settings.LOG_LEVEL)

    mode = JobKind(mode)
    logger.log(
        "WORKER",
        f"Worker started {mode.value} for {len(anime_ids) if anime_ids is not None else 'all'} entries",
    )
    result = asyncio.run(run(mode, anime_ids, info_only))
    logger.log(
        "WORKER",
        f"Worker finished {mode.value}: processed={result.processed} updated={result.updated} skipped={result.skipped} failed={result.failed} in {result.duration:.2f}s",
    )
    return result.model_dump(mode="json")
