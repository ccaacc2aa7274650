from typing import Dict, List, Optional

from enime.core.logger import logger
from enime.core.models import settings
from enime.scrapers.base import BaseScraper
from enime.scrapers.gogoanime import GogoanimeScraper
from enime.scrapers.kitsu import KitsuScraper
from enime.scrapers.models import ScraperDescriptor
from enime.scrapers.zoro import ZoroScraper
from enime.utils.network_manager import NetworkManager, network_manager


def build_default_scrapers(manager: NetworkManager = network_manager):
    return [
        GogoanimeScraper(
            manager.get_client("Gogoanime", impersonate="chrome"),
            enabled=bool(settings.SCRAPE_GOGOANIME),
        ),
        ZoroScraper(
            manager.get_client("Zoro", impersonate="chrome"),
            enabled=bool(settings.SCRAPE_ZORO),
        ),
        KitsuScraper(
            manager.get_client(
                "Kitsu", headers={"Accept": "application/vnd.api+json"}
            ),
            enabled=bool(settings.SCRAPE_KITSU),
        ),
    ]


class ScraperManager:
    """
    Registry of the configured scraper plugins.

    `full_coverage()` is the number of enabled plugins that produce playable
    sources; an episode is fully covered once it has that many sources.
    """

    def __init__(self, scrapers: Optional[List[BaseScraper]] = None):
        self.scrapers: Dict[str, BaseScraper] = {}
        for scraper in build_default_scrapers() if scrapers is None else scrapers:
            self.register(scraper)

    def register(self, scraper: BaseScraper):
        if scraper.name in self.scrapers:
            raise ValueError(f"Scraper {scraper.name} is already registered")

        self.scrapers[scraper.name] = scraper
        logger.log(
            "SCRAPER",
            f"Registered {scraper.name} (enabled={scraper.enabled}, info_only={scraper.info_only})",
        )

    def get(self, name: str) -> Optional[BaseScraper]:
        return self.scrapers.get(name)

    def descriptors(self) -> List[ScraperDescriptor]:
        return [scraper.descriptor for scraper in self.scrapers.values()]

    def total_count(self) -> int:
        return len(self.scrapers)

    def full_coverage(self) -> int:
        return sum(
            1
            for scraper in self.scrapers.values()
            if scraper.enabled and not scraper.info_only
        )

    def active(self, info_only: bool = False) -> List[BaseScraper]:
        return [
            scraper
            for scraper in self.scrapers.values()
            if scraper.enabled and scraper.info_only == info_only
        ]


scraper_manager = ScraperManager()
