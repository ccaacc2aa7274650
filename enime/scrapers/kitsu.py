from typing import Iterable

from enime.core.models import settings
from enime.scrapers.base import BaseScraper
from enime.scrapers.exceptions import FetchFailure, MatchNotFound, ScraperError
from enime.scrapers.models import EpisodeInfo, MatchCandidate
from enime.utils.network_manager import EgressClient


class KitsuScraper(BaseScraper):
    """Info-only plugin: supplies episode titles, never playable sources."""

    name = "Kitsu"
    info_only = True

    def __init__(self, client: EgressClient, url: str = None, enabled: bool = True):
        super().__init__(client, url or settings.KITSU_URL, enabled)

    async def match(self, title: str, aliases: Iterable[str] = ()) -> MatchCandidate:
        async with self.client.get(
            f"{self.url}/anime", params={"filter[text]": title, "page[limit]": 10}
        ) as response:
            if response.status != 200:
                raise ScraperError(self.name, f"search returned HTTP {response.status}")
            data = await response.json()

        candidates = []
        for item in (data or {}).get("data", []):
            attributes = item.get("attributes", {})
            names = [attributes.get("canonicalTitle")]
            names.extend((attributes.get("titles") or {}).values())
            for name in names:
                if name:
                    candidates.append(MatchCandidate(title=name, locator=str(item["id"])))

        if not candidates:
            raise MatchNotFound(self.name, title)

        return self.best_candidate(title, aliases, candidates)

    async def fetch(self, locator: str, episode_number: int) -> EpisodeInfo:
        async with self.client.get(
            f"{self.url}/anime/{locator}/episodes",
            params={"filter[number]": episode_number},
        ) as response:
            if response.status != 200:
                raise FetchFailure(
                    self.name, locator, episode_number, f"HTTP {response.status}"
                )
            data = await response.json()

        items = (data or {}).get("data", [])
        if not items:
            raise FetchFailure(self.name, locator, episode_number, "episode not listed")

        attributes = items[0].get("attributes", {})
        thumbnail = attributes.get("thumbnail") or {}
        return EpisodeInfo(
            number=episode_number,
            title=attributes.get("canonicalTitle"),
            description=attributes.get("synopsis") or attributes.get("description"),
            image=thumbnail.get("original"),
        )
