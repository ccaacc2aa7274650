import re
from abc import ABC, abstractmethod
from typing import Iterable, List

from RTN import title_match

from enime.catalog.models import EpisodeSource
from enime.core.models import settings
from enime.scrapers.exceptions import MatchNotFound
from enime.scrapers.models import MatchCandidate, ScraperDescriptor
from enime.utils.network_manager import EgressClient

NORMALIZE_PATTERN = re.compile(r"[^\w]+", re.UNICODE)


def normalize_title(title: str):
    return " ".join(NORMALIZE_PATTERN.sub(" ", title.lower()).split())


class BaseScraper(ABC):
    name: str = None
    info_only: bool = False

    def __init__(self, client: EgressClient, url: str = None, enabled: bool = True):
        self.client = client
        self.url = url
        self.enabled = enabled

    @property
    def descriptor(self):
        return ScraperDescriptor(
            name=self.name, enabled=self.enabled, info_only=self.info_only
        )

    @abstractmethod
    async def match(self, title: str, aliases: Iterable[str] = ()) -> MatchCandidate:
        pass

    @abstractmethod
    async def fetch(self, locator: str, episode_number: int) -> EpisodeSource:
        pass

    def best_candidate(
        self, title: str, aliases: Iterable[str], candidates: List[MatchCandidate]
    ) -> MatchCandidate:
        aliases = [alias for alias in aliases if alias]
        wanted = {normalize_title(name) for name in [title, *aliases]}

        for candidate in candidates:
            if normalize_title(candidate.title) in wanted:
                return candidate

        for candidate in candidates:
            if title_match(
                title,
                candidate.title,
                threshold=settings.TITLE_MATCH_THRESHOLD,
                aliases={"ez": aliases},
            ):
                return candidate

        raise MatchNotFound(self.name, title)
