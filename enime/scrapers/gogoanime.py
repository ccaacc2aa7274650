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
    r'<p class="name">\s*<a href="/category/([^"]+)" title="([^"]+)"'
)
EMBED_PATTERN = re.compile(r'<li class="anime">\s*<a[^>]*data-video="([^"]+)"')
IFRAME_PATTERN = re.compile(r'<iframe[^>]*src="([^"]+)"')


def parse_search_results(html_content: str):
    return [
        MatchCandidate(title=title, locator=slug)
        for slug, title in SEARCH_PATTERN.findall(html_content)
    ]


def parse_embed_url(html_content: str):
    match = EMBED_PATTERN.search(html_content) or IFRAME_PATTERN.search(html_content)
    if not match:
        return None

    embed_url = match.group(1)
    if embed_url.startswith("//"):
        embed_url = f"https:{embed_url}"
    return embed_url


class GogoanimeScraper(BaseScraper):
    name = "Gogoanime"

    def __init__(self, client: EgressClient, url: str = None, enabled: bool = True):
        super().__init__(client, url or settings.GOGOANIME_URL, enabled)

    async def match(self, title: str, aliases: Iterable[str] = ()) -> MatchCandidate:
        async with self.client.get(
            f"{self.url}/search.html?keyword={quote_plus(title)}"
        ) as response:
            if response.status != 200:
                raise ScraperError(self.name, f"search returned HTTP {response.status}")
            html_content = await response.text()

        candidates = parse_search_results(html_content)
        if not candidates:
            raise MatchNotFound(self.name, title)

        # Subbed releases first, the catalog tracks the original airing
        candidates.sort(key=lambda candidate: "(dub)" in candidate.title.lower())
        return self.best_candidate(title, aliases, candidates)

    async def fetch(self, locator: str, episode_number: int) -> EpisodeSource:
        async with self.client.get(
            f"{self.url}/{locator}-episode-{episode_number}"
        ) as response:
            if response.status != 200:
                raise FetchFailure(
                    self.name, locator, episode_number, f"HTTP {response.status}"
                )
            html_content = await response.text()

        embed_url = parse_embed_url(html_content)
        if not embed_url:
            raise FetchFailure(self.name, locator, episode_number, "no embed found")

        return EpisodeSource(scraper=self.name, locator=embed_url)
