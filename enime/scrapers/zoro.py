import re
from typing import Iterable
from urllib.parse import quote_plus

from enime.catalog.models import EpisodeSource
from enime.core.models import settings
from enime.scrapers.base import BaseScraper
from enime.scrapers.exceptions import FetchFailure, MatchNotFound, ScraperError
from enime.scrapers.models import MatchCandidate
from enime.utils.network_manager import EgressClient

SEARCH_PATTERN = re.compile(
    r'<h3 class="film-name">\s*<a href="/([^"?]+-(\d+))(?:\?[^"]*)?"[^>]*title="([^"]+)"'
)
EPISODE_PATTERN = re.compile(
    r'<a[^>]*data-number="(\d+)"[^>]*data-id="(\d+)"[^>]*href="([^"]+)"'
)


def parse_search_results(html_content: str):
    return [
        MatchCandidate(title=title, locator=anime_id)
        for _, anime_id, title in SEARCH_PATTERN.findall(html_content)
    ]


def parse_episode_list(html_content: str):
    return {int(number): href for number, _, href in EPISODE_PATTERN.findall(html_content)}


class ZoroScraper(BaseScraper):
    name = "Zoro"

    def __init__(self, client: EgressClient, url: str = None, enabled: bool = True):
        super().__init__(client, url or settings.ZORO_URL, enabled)

    async def match(self, title: str, aliases: Iterable[str] = ()) -> MatchCandidate:
        async with self.client.get(
            f"{self.url}/search?keyword={quote_plus(title)}"
        ) as response:
            if response.status != 200:
                raise ScraperError(self.name, f"search returned HTTP {response.status}")
            html_content = await response.text()

        candidates = parse_search_results(html_content)
        if not candidates:
            raise MatchNotFound(self.name, title)

        return self.best_candidate(title, aliases, candidates)

    async def fetch(self, locator: str, episode_number: int) -> EpisodeSource:
        async with self.client.get(
            f"{self.url}/ajax/v2/episode/list/{locator}",
            headers={"X-Requested-With": "XMLHttpRequest"},
        ) as response:
            if response.status != 200:
                raise FetchFailure(
                    self.name, locator, episode_number, f"HTTP {response.status}"
                )
            try:
                data = await response.json()
            except Exception as e:
                raise FetchFailure(self.name, locator, episode_number, f"invalid JSON: {e}")

        episodes = parse_episode_list(data.get("html", "") if isinstance(data, dict) else "")
        href = episodes.get(episode_number)
        if not href:
            raise FetchFailure(self.name, locator, episode_number, "episode not listed")

        return EpisodeSource(scraper=self.name, locator=f"{self.url}{href}")
