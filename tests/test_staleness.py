import asyncio

import pytest

from conftest import FakeScraper, add_entry
from enime.catalog.models import (AnimeStatus, CatalogEntry, EntryCondition,
                                  Episode, EpisodeSource, RelationType)
from enime.catalog.store import CatalogStore
from enime.scrapers.manager import ScraperManager
from enime.services.staleness import (StalenessDetector, covered_episodes,
                                      is_stale, needs_relation_refresh)


def make_entry(current_episode, source_counts):
    return CatalogEntry(
        id="a",
        status=AnimeStatus.RELEASING,
        current_episode=current_episode,
        episodes=[
            Episode(
                id=f"e{number}",
                number=number,
                sources=[
                    EpisodeSource(scraper=f"s{i}", locator=f"{number}/{i}")
                    for i in range(count)
                ],
            )
            for number, count in enumerate(source_counts, start=1)
        ],
    )


@pytest.mark.parametrize(
    "full_coverage,current_episode,source_counts,expected",
    [
        (0, 3, [0, 0, 0], False),
        (0, 2, [0, 0, 0], True),
        (0, 0, [], False),
        (1, 3, [1, 2, 0], True),
        (1, 2, [1, 2, 0], False),
        (3, 2, [3, 3, 2], False),
        (3, 3, [3, 3, 2], True),
        (3, 0, [2, 1], False),
    ],
)
def test_is_stale(full_coverage, current_episode, source_counts, expected):
    entry = make_entry(current_episode, source_counts)

    assert is_stale(entry, full_coverage) is expected
    assert is_stale(entry, full_coverage) == (
        current_episode
        != sum(1 for count in source_counts if count >= full_coverage)
    )


def test_covered_episodes_counts_only_full_coverage():
    entry = make_entry(5, [2, 2, 1, 0, 3])

    assert covered_episodes(entry, 2) == 3
    assert covered_episodes(entry, 0) == 5


def test_relation_refresh_predicate():
    assert needs_relation_refresh([]) is True
    assert needs_relation_refresh([RelationType.SEQUEL]) is True
    assert needs_relation_refresh([RelationType.PREQUEL, RelationType.SIDE_STORY]) is True
    assert needs_relation_refresh([RelationType.PREQUEL, RelationType.SEQUEL]) is False


def registry(enabled_sources=2):
    return ScraperManager(
        [FakeScraper(f"Source{i}") for i in range(enabled_sources)]
        + [FakeScraper("Disabled", enabled=False), FakeScraper("Info", info_only=True)]
    )


def test_detect_stale_releasing_entries(open_database):
    async def scenario():
        async with open_database() as db:
            store = CatalogStore(db)
            stale_id = await add_entry(
                store, 1, AnimeStatus.RELEASING, 3,
                sources={1: ["Source0", "Source1"], 2: ["Source0", "Source1"]},
            )
            fresh_id = await add_entry(
                store, 2, AnimeStatus.RELEASING, 2, title="Spy x Family",
                sources={1: ["Source0", "Source1"], 2: ["Source0", "Source1"]},
            )
            await add_entry(store, 3, AnimeStatus.FINISHED, 12, title="Frieren")

            detector = StalenessDetector(store, registry())
            stale = await detector.detect_stale(
                EntryCondition(statuses=[AnimeStatus.RELEASING])
            )
            return stale_id, fresh_id, stale

    stale_id, fresh_id, stale = asyncio.run(scenario())

    assert [entry.id for entry in stale] == [stale_id]
    assert fresh_id not in {entry.id for entry in stale}


def test_detect_stale_partial_coverage_is_stale(open_database):
    async def scenario():
        async with open_database() as db:
            store = CatalogStore(db)
            anime_id = await add_entry(
                store, 1, AnimeStatus.RELEASING, 2,
                sources={1: ["Source0", "Source1"], 2: ["Source0"]},
            )
            detector = StalenessDetector(store, registry())
            stale = await detector.detect_stale(
                EntryCondition(statuses=[AnimeStatus.RELEASING])
            )
            return anime_id, stale

    anime_id, stale = asyncio.run(scenario())

    assert [entry.id for entry in stale] == [anime_id]


def test_detect_stale_is_idempotent(open_database):
    async def scenario():
        async with open_database() as db:
            store = CatalogStore(db)
            for anilist_id in range(1, 6):
                await add_entry(
                    store, anilist_id, AnimeStatus.RELEASING, anilist_id % 3,
                    title=f"Show {anilist_id}", sources={1: ["Source0", "Source1"]},
                )
            detector = StalenessDetector(store, registry())
            condition = EntryCondition(statuses=[AnimeStatus.RELEASING])
            first = await detector.detect_stale(condition)
            second = await detector.detect_stale(condition)
            return first, second

    first, second = asyncio.run(scenario())

    assert first
    assert {entry.id for entry in first} == {entry.id for entry in second}


def test_detect_stale_without_episode_update(open_database):
    async def scenario():
        async with open_database() as db:
            store = CatalogStore(db)
            untouched = await add_entry(store, 1, AnimeStatus.FINISHED, 12)
            await add_entry(
                store, 2, AnimeStatus.RELEASING, 2, title="Spy x Family",
                sources={1: ["Source0"]},
            )
            await add_entry(store, 3, AnimeStatus.NOT_YET_RELEASED, 0, title="Upcoming")

            detector = StalenessDetector(store, registry())
            stale = await detector.detect_stale(
                EntryCondition(
                    statuses=[AnimeStatus.RELEASING, AnimeStatus.FINISHED],
                    last_episode_update_null=True,
                )
            )
            return untouched, stale

    untouched, stale = asyncio.run(scenario())

    assert [entry.id for entry in stale] == [untouched]


def test_detect_relation_refresh(open_database):
    async def scenario():
        async with open_database() as db:
            store = CatalogStore(db)
            lonely = await add_entry(store, 1, AnimeStatus.FINISHED, 12, title="First")
            only_sequel = await add_entry(store, 2, AnimeStatus.FINISHED, 12, title="Second")
            complete = await add_entry(store, 3, AnimeStatus.FINISHED, 12, title="Third")
            await add_entry(store, 4, AnimeStatus.FINISHED, 12, title="Fourth")

            await store.replace_relations(only_sequel, [(3, RelationType.SEQUEL)])
            await store.replace_relations(
                complete, [(2, RelationType.PREQUEL), (4, RelationType.SEQUEL)]
            )

            ids = await StalenessDetector(store, registry()).detect_relation_refresh()
            return lonely, only_sequel, complete, ids

    lonely, only_sequel, complete, ids = asyncio.run(scenario())

    assert lonely in ids
    assert only_sequel in ids
    assert complete not in ids
