from contextlib import asynccontextmanager

import pytest
from databases import Database

from enime.catalog.store import CatalogStore
from enime.core.database import setup_database, teardown_database
from enime.core.execution import setup_runtime
from enime.scrapers.base import BaseScraper
from enime.scrapers.exceptions import FetchFailure, MatchNotFound
from enime.scrapers.models import EpisodeInfo, MatchCandidate
from enime.catalog.models import EpisodeSource


@pytest.fixture(autouse=True)
def deterministic_runtime():
    setup_runtime(deterministic_time_mode=True)
    yield
    setup_runtime(deterministic_time_mode=False)


@pytest.fixture
def open_database(tmp_path):
    @asynccontextmanager
    async def _open():
        db = Database(f"sqlite:///{tmp_path / 'enime.db'}")
        await setup_database(db)
        try:
            yield db
        finally:
            await teardown_database(db)

    return _open


class FakeScraper(BaseScraper):
    def __init__(
        self,
        name,
        info_only=False,
        enabled=True,
        catalog=None,
        failing_episodes=(),
    ):
        super().__init__(client=None, url=f"https://{name.lower()}.test", enabled=enabled)
        self.name = name
        self.info_only = info_only
        self.catalog = catalog or {}
        self.failing_episodes = set(failing_episodes)
        self.match_calls = []
        self.fetch_calls = []

    async def match(self, title, aliases=()):
        self.match_calls.append(title)
        candidates = [
            MatchCandidate(title=site_title, locator=locator)
            for site_title, locator in self.catalog.items()
        ]
        if not candidates:
            raise MatchNotFound(self.name, title)
        return self.best_candidate(title, aliases, candidates)

    async def fetch(self, locator, episode_number):
        self.fetch_calls.append((locator, episode_number))
        if episode_number in self.failing_episodes:
            raise FetchFailure(self.name, locator, episode_number, "site changed")
        if self.info_only:
            return EpisodeInfo(number=episode_number, title=f"Episode {episode_number}")
        return EpisodeSource(
            scraper=self.name, locator=f"{self.url}/{locator}/{episode_number}"
        )


async def add_entry(store: CatalogStore, anilist_id, status, current_episode, title="Lycoris Recoil", sources=None):
    """Create an entry and give each listed episode the listed scraper sources."""
    anime_id = await store.upsert_anime(
        anilist_id=anilist_id,
        status=status,
        current_episode=current_episode,
        title_romaji=title,
    )
    for number, scrapers in (sources or {}).items():
        for scraper in scrapers:
            await store.add_episode_source(anime_id, number, scraper, f"{scraper}/{number}")
    return anime_id
